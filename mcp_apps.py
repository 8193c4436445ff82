"""
MCP Apps (io.modelcontextprotocol/ui) constants and client capability checks.
"""

from typing import Any, Dict, Optional

MCP_APPS_EXTENSION_ID = "io.modelcontextprotocol/ui"
MCP_APPS_MIME_TYPE = "text/html;profile=mcp-app"
# Apps SDK (ChatGPT) widget templates
APPS_SDK_MIME_TYPE = "text/html+skybridge"

UI_METHODS = {
    "INITIALIZE": "ui/initialize",
    "INITIALIZED": "ui/notifications/initialized",
    "TOOL_INPUT": "ui/notifications/tool-input",
    "TOOL_INPUT_PARTIAL": "ui/notifications/tool-input-partial",
    "TOOL_RESULT": "ui/notifications/tool-result",
    "HOST_CONTEXT_CHANGED": "ui/notifications/host-context-changed",
    "SIZE_CHANGED": "ui/notifications/size-changed",
    "OPEN_LINK": "ui/open-link",
    "TOOLS_CALL": "tools/call",
}


def _extension_entry(capabilities: Optional[Dict[str, Any]], location: str) -> Optional[Dict[str, Any]]:
    if not isinstance(capabilities, dict):
        return None
    section = capabilities.get(location)
    if not isinstance(section, dict):
        return None
    entry = section.get(MCP_APPS_EXTENSION_ID)
    if not isinstance(entry, dict):
        return None
    return entry


def _mime_types(entry: Optional[Dict[str, Any]]) -> list:
    if not entry:
        return []
    mime_types = entry.get("mimeTypes")
    return mime_types if isinstance(mime_types, list) else []


def get_mcp_apps_capability_location(capabilities: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Where the client advertises MCP Apps support.

    Returns "extensions", "experimental" (older clients), or None. The entry
    only counts when it lists the MCP Apps MIME type.
    """
    for location in ("extensions", "experimental"):
        if MCP_APPS_MIME_TYPE in _mime_types(_extension_entry(capabilities, location)):
            return location
    return None


def mcp_apps_capability(capabilities: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    location = get_mcp_apps_capability_location(capabilities)
    if location is None:
        return None
    return _extension_entry(capabilities, location)
