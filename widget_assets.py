"""
Widget asset loader.

The widget bundles are built outside this repo into an assets directory as
either `<name>.html` or a content-hashed `<name>-<hash>.html`. A missing
asset never raises: callers get a placeholder page explaining what to build.
"""

from pathlib import Path
from typing import Dict, Optional, Union

from fasthtml.common import Body, Code, Head, Html, Meta, P, Title, to_xml


def placeholder_html(widget_name: str, assets_dir: Path) -> str:
    page = Html(
        Head(
            Meta(charset="UTF-8"),
            Meta(name="viewport", content="width=device-width, initial-scale=1.0"),
            Title(f"{widget_name} (assets missing)"),
        ),
        Body(
            P(f"Widget assets for '{widget_name}' not found in ", Code(str(assets_dir)), "."),
            P("Build the widget bundle first (npm run build:widgets)."),
        ),
    )
    return to_xml(page)


class WidgetAssets:
    def __init__(self, assets_dir: Union[str, Path]):
        self.assets_dir = Path(assets_dir)
        self._cache: Dict[str, str] = {}

    def find(self, widget_name: str) -> Optional[Path]:
        exact = self.assets_dir / f"{widget_name}.html"
        if exact.is_file():
            return exact
        if not self.assets_dir.is_dir():
            return None
        hashed = [p for p in self.assets_dir.glob(f"{widget_name}-*.html") if p.is_file()]
        if not hashed:
            return None
        # newest build wins
        hashed.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return hashed[0]

    def load(self, widget_name: str) -> str:
        cached = self._cache.get(widget_name)
        if cached is not None:
            return cached
        path = self.find(widget_name)
        if path is None:
            print(f"[Assets] {widget_name}: no built HTML in {self.assets_dir}, serving placeholder")
            return placeholder_html(widget_name, self.assets_dir)
        try:
            html = path.read_text(encoding="utf-8")
        except OSError as e:
            print(f"[Assets] {widget_name}: failed to read {path}: {e}")
            return placeholder_html(widget_name, self.assets_dir)
        self._cache[widget_name] = html
        return html

    def clear(self) -> None:
        self._cache.clear()

    def asset_url(self, base_url: str, filename: str) -> str:
        """Public URL for a file under /assets, with an mtime cache-buster when the file exists."""
        url = f"{base_url.rstrip('/')}/assets/{filename}"
        try:
            mtime = int((self.assets_dir / filename).stat().st_mtime)
        except OSError:
            return url
        return f"{url}?v={mtime}"
