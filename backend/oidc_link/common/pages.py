"""
Minimal HTML pages shown to the browser at the end of the login flow.
"""

import html

from fastapi.responses import HTMLResponse

_PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
body {{ font-family: system-ui, sans-serif; background: #2b2d31; color: #f2f3f5;
       display: flex; align-items: center; justify-content: center; height: 100vh; margin: 0; }}
main {{ background: #313338; padding: 2rem 2.5rem; border-radius: 8px; max-width: 32rem; }}
h1 {{ margin-top: 0; font-size: 1.4rem; }}
</style>
</head>
<body>
<main>
<h1>{title}</h1>
<p>{message}</p>
</main>
</body>
</html>
"""


def render_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    """Render a small escaped HTML page"""
    content = _PAGE_TEMPLATE.format(title=html.escape(title), message=html.escape(message))
    return HTMLResponse(content=content, status_code=status_code, headers={"Cache-Control": "no-store"})


def render_success_page(username: str) -> HTMLResponse:
    return render_page(
        "Account linked",
        f"Your account {username} is now linked. You can close this tab and return to Discord.",
    )


def render_error_page(message: str, status_code: int) -> HTMLResponse:
    return render_page("Linking failed", message, status_code=status_code)
