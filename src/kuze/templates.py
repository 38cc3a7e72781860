"""HTML pages for the one-time secret entry form.

Pure rendering: each function takes the values to show and returns the page
as a string. Every interpolated value goes through ``html.escape``.
"""

import html as _html

_STYLE = """
  body { margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
         background: #0a0e17; color: #e0e0e0; display: flex; align-items: center;
         justify-content: center; min-height: 100vh; }
  .card { background: rgba(15, 23, 42, 0.9); border: 1px solid rgba(0, 217, 255, 0.15);
          border-radius: 12px; padding: 2rem; max-width: 500px; width: 100%; }
  h1 { color: #00D9FF; font-size: 1.5rem; margin-bottom: 1rem; }
  p { color: #a0a0a0; line-height: 1.6; }
  code { color: #e0e0e0; }
  .error { color: #ff6b6b; }
  input[type=password] { width: 100%; box-sizing: border-box; padding: 0.6rem;
         border-radius: 6px; border: 1px solid #334155; background: #0f172a; color: #e0e0e0; }
  button { margin-top: 1rem; padding: 0.6rem 1.2rem; border: 0; border-radius: 6px;
           background: #00D9FF; color: #0a0e17; font-weight: 600; cursor: pointer; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<meta name="referrer" content="no-referrer">
<title>{_html.escape(title)}</title>
<style>{_STYLE}</style>
</head>
<body>
<div class="card">
{body}
</div>
</body>
</html>"""


def render_form(secret_ref: str, token: str, error: str = "") -> str:
    """Entry form bound to one token. ``error`` is shown inline when set."""
    safe_ref = _html.escape(secret_ref)
    safe_token = _html.escape(token, quote=True)
    error_html = f'  <p class="error">{_html.escape(error)}</p>\n' if error else ""
    body = f"""  <h1>Enter secret</h1>
  <p>You are setting the value for <code>{safe_ref}</code>.
     This link works once.</p>
{error_html}  <form method="post" action="/s/{safe_token}" autocomplete="off">
    <input type="password" name="secret_value" autocomplete="off" autofocus required>
    <button type="submit">Store secret</button>
  </form>"""
    return _page("Kuze - Enter secret", body)


def render_success(secret_ref: str) -> str:
    """Confirmation page after a value was stored."""
    body = f"""  <h1>Secret stored</h1>
  <p>The value for <code>{_html.escape(secret_ref)}</code> has been stored.
     You can close this window.</p>"""
    return _page("Kuze - Secret stored", body)


def render_expired() -> str:
    """Terminal page, identical for not found, expired and used tokens."""
    body = """  <h1>Link no longer valid</h1>
  <p>This link is no longer valid. Ask for a new one if you still need to
     enter the secret.</p>"""
    return _page("Kuze - Link no longer valid", body)
