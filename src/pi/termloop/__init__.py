"""pi-termloop: terminal render-and-input loop with differential rendering."""

# Application
from pi.termloop.application import Application

# Background tasks
from pi.termloop.background import BackgroundTaskRegistry

# Configuration
from pi.termloop.config import LoopConfig

# Current application
from pi.termloop.context import get_app, get_app_or_none, set_app

# Input decoding
from pi.termloop.decoder import KeyDecoder

# Input sources
from pi.termloop.input import Input, PipeInput, Vt100Input

# Redraw coordination
from pi.termloop.invalidation import RedrawCoordinator

# Key bindings and dispatch
from pi.termloop.key_binding import Binding, KeyBindings, KeyBindingsBase, merge_key_bindings
from pi.termloop.key_processor import KeyPressEvent, KeyProcessor
from pi.termloop.keys import KeyPress, Keys

# Layout
from pi.termloop.layout import SET_CURSOR_POSITION, FormattedTextLayout, Layout

# Output
from pi.termloop.output import Output, Vt100Output

# Printing above the application
from pi.termloop.patch_stdout import StdoutProxy, patch_stdout

# Rendering
from pi.termloop.renderer import CprSupport, HeightIsUnknownError, Renderer

# Terminal hand-off
from pi.termloop.run_in_terminal import in_terminal, run_in_terminal

# Screen model
from pi.termloop.screen import Char, Point, Screen, Size, WritePosition

# Signals
from pi.termloop.signals import SignalWatcher

# Styles
from pi.termloop.styles import Attrs, ColorDepth, Style

__all__ = [
    # Application
    "Application",
    # Background tasks
    "BackgroundTaskRegistry",
    # Configuration
    "LoopConfig",
    # Current application
    "get_app",
    "get_app_or_none",
    "set_app",
    # Input
    "Input",
    "KeyDecoder",
    "PipeInput",
    "Vt100Input",
    # Redraw coordination
    "RedrawCoordinator",
    # Key bindings
    "Binding",
    "KeyBindings",
    "KeyBindingsBase",
    "KeyPress",
    "KeyPressEvent",
    "KeyProcessor",
    "Keys",
    "merge_key_bindings",
    # Layout
    "FormattedTextLayout",
    "Layout",
    "SET_CURSOR_POSITION",
    # Output
    "Output",
    "Vt100Output",
    # Printing above the application
    "StdoutProxy",
    "patch_stdout",
    # Rendering
    "CprSupport",
    "HeightIsUnknownError",
    "Renderer",
    # Terminal hand-off
    "in_terminal",
    "run_in_terminal",
    # Screen
    "Char",
    "Point",
    "Screen",
    "Size",
    "WritePosition",
    # Signals
    "SignalWatcher",
    # Styles
    "Attrs",
    "ColorDepth",
    "Style",
]
