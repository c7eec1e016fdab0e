"""HTML utility functions for Kiln.

This module provides the small amount of HTML manipulation the dev server
needs: building the live-reload client script and injecting it into pages.

Functions:
    make_reload_script: Build the live-reload client snippet for a websocket port.
    inject_script: Insert a snippet before ``</body>`` (or append it).
"""

from __future__ import annotations

_RELOAD_SCRIPT_TEMPLATE = """
<script>
(() => {{
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') {{
      location.reload();
    }} else if (data.type === 'css') {{
      const target = (data.path || '').split('?')[0];
      document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {{
        const url = new URL(link.href);
        if (!target || url.pathname === target) {{
          url.searchParams.set('livereload', Date.now());
          link.href = url.toString();
        }}
      }});
    }}
  }};
}})();
</script>
"""


def make_reload_script(ws_port: int) -> str:
    """Return the live-reload client script for ``ws_port``.

    The client reloads the page on ``reload`` messages and swaps matching
    stylesheets on ``css`` messages.
    """
    return _RELOAD_SCRIPT_TEMPLATE.format(ws_port=ws_port)


def inject_script(content: str, script: str) -> str:
    """Insert ``script`` before the last ``</body>`` tag, or append it.

    Examples:
        >>> inject_script("<body>x</body>", "<s/>")
        '<body>x<s/></body>'
    """
    index = content.rfind("</body>")
    if index == -1:
        return content + script
    return content[:index] + script + content[index:]
