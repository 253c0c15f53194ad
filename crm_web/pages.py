"""
HTML page helpers. Callers pass already-escaped body markup; use esc() for any
text that came from the user or from Salesforce.
"""
import html

from fastapi.responses import HTMLResponse

_STYLE = """
    body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }
    .btn { background: #0176d3; color: white; padding: 10px 20px; text-decoration: none;
           border-radius: 4px; display: inline-block; margin: 5px; border: none; cursor: pointer; }
    .logout { background: #dc3545; }
    .error { color: #b00020; }
    table { border-collapse: collapse; }
    th, td { border: 1px solid #ccc; padding: 6px; text-align: left; }
"""


def esc(value) -> str:
    if value is None:
        return ""
    return html.escape(str(value))


def page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{esc(title)}</title>
<style>{_STYLE}</style>
</head>
<body>
{body}
</body>
</html>""",
        status_code=status_code,
    )


def error_page(title: str, message: str, status_code: int, *, back_href: str = "/login", back_label: str = "Back to login") -> HTMLResponse:
    return page(
        title,
        f"""  <h1>{esc(title)}</h1>
  <p class="error">{esc(message)}</p>
  <p><a href="{esc(back_href)}">{esc(back_label)}</a></p>""",
        status_code=status_code,
    )
