from widget_client.frame_channel import FramePort, frame_pair
from widget_client.ui_client import ClientState, McpUiClient, Subscription
from widget_client.ui_host import UiHost

__all__ = ["ClientState", "FramePort", "McpUiClient", "Subscription", "UiHost", "frame_pair"]
