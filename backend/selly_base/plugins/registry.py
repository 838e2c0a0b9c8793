from __future__ import annotations

import importlib
import logging
import pkgutil

from selly_base.plugins.base import FileParserPlugin

logger = logging.getLogger(__name__)

_registry: dict[str, dict[str, FileParserPlugin]] = {
    "parser": {},
}


def register(plugin_type: str, plugin: FileParserPlugin) -> None:
    if plugin_type not in _registry:
        raise ValueError(f"Unknown plugin type: {plugin_type}")
    _registry[plugin_type][plugin.name] = plugin


def get(plugin_type: str, name: str) -> FileParserPlugin | None:
    return _registry.get(plugin_type, {}).get(name)


def get_all(plugin_type: str) -> dict[str, FileParserPlugin]:
    return _registry.get(plugin_type, {})


def find_parser(file_content: bytes, filename: str) -> FileParserPlugin | None:
    """Return the first registered parser that accepts the file, discovering on first use."""
    if not get_all("parser"):
        discover()
    for parser in get_all("parser").values():
        if parser.detect(file_content, filename):
            return parser
    return None


def supported_extensions() -> list[str]:
    if not get_all("parser"):
        discover()
    return sorted(
        {ext for parser in get_all("parser").values() for ext in parser.supported_extensions}
    )


def discover() -> None:
    """Auto-discover and register plugins from selly_base.plugins subpackages."""
    import selly_base.plugins.parsers as parsers_pkg

    for _importer, modname, _ispkg in pkgutil.iter_modules(parsers_pkg.__path__):
        module = importlib.import_module(f"selly_base.plugins.parsers.{modname}")
        if hasattr(module, "register_plugin"):
            module.register_plugin()
    logger.debug("Registered parsers: %s", ", ".join(sorted(get_all("parser"))))
