import importlib.util
import inspect
import types
from typing import Callable

ResizePluginFn = Callable[[str, int, int], bytes]

PLUGIN_FUNC_NAME = "resize"


class PluginLoadError(RuntimeError):
    pass


class PluginSignatureError(TypeError):
    pass


def load_module_from_file(module_file_path: str) -> types.ModuleType:
    """Load a Python module file."""
    spec = importlib.util.spec_from_file_location("resize_fn", module_file_path)
    if spec is None or spec.loader is None:
        raise PluginLoadError(f"Could not load spec for: {module_file_path}")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # executes user code
    return mod


def load_resize_fn(module_file_path: str) -> ResizePluginFn:
    """Load the user defined resize function from a Python module file."""
    mod = load_module_from_file(module_file_path)
    fn = getattr(mod, PLUGIN_FUNC_NAME, None)
    if fn is None or not callable(fn):
        raise PluginLoadError(
            f"Plugin must define `{PLUGIN_FUNC_NAME}(source_path: str, width: int, height: int) -> bytes`"
        )

    sig = inspect.signature(fn)
    params = list(sig.parameters.values())
    if len(params) != 3 or any(
        p.kind not in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        for p in params
    ):
        raise PluginSignatureError(
            "resize must accept exactly three positional args: (source_path: str, width: int, height: int)"
        )
    return fn


def format_bytes(size: int) -> str:
    """Human readable byte count, e.g. 51200 -> '50.0 KiB'."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KiB"
    return f"{size / (1024 * 1024):.1f} MiB"
