"""HTML templates for the Caspio credential form and the info page."""

from html import escape

AUTHORIZE_PAGE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Connect to Caspio</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 450px; border: 1px solid #E5E4E0; }}
        h1 {{ margin: 0 0 8px; color: #1A1915; font-size: 24px; font-weight: 600; }}
        p {{ color: #6B6860; margin: 0 0 24px; }}
        .form-group {{ margin-bottom: 20px; }}
        label {{ display: block; margin-bottom: 8px; color: #1A1915; font-weight: 500; font-size: 14px; }}
        input[type="text"], input[type="password"] {{
            width: 100%; padding: 12px 14px; border: 1px solid #D9D8D4; border-radius: 8px;
            font-size: 15px; box-sizing: border-box; background: #FAF9F7; }}
        input:focus {{ outline: none; border-color: #3B82F6; }}
        button {{ width: 100%; padding: 14px; background: #3B82F6;
                 color: white; border: none; border-radius: 8px; font-size: 15px; font-weight: 600;
                 cursor: pointer; }}
        button:hover {{ background: #1D4ED8; }}
        .error {{ background: #FEF2F2; color: #B91C1C; padding: 12px; border-radius: 8px; margin-bottom: 20px; border: 1px solid #FECACA; }}
        .info {{ background: #F0FDF4; color: #166534; padding: 12px; border-radius: 8px; margin-top: 20px; font-size: 13px; }}
        .help {{ margin-top: 20px; color: #6B6860; font-size: 13px; line-height: 1.6; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Connect to Caspio</h1>
        <p>Enter your Caspio API credentials to connect</p>
        {error}
        <form method="POST" action="/oauth/authorize/submit">
            <input type="hidden" name="auth_id" value="{auth_id}">
            <div class="form-group">
                <label for="caspio_base_url">Caspio Base URL</label>
                <input type="text" id="caspio_base_url" name="caspio_base_url" required placeholder="https://c1abc123.caspio.com">
            </div>
            <div class="form-group">
                <label for="caspio_client_id">Client ID</label>
                <input type="text" id="caspio_client_id" name="caspio_client_id" required placeholder="Your Caspio API Client ID">
            </div>
            <div class="form-group">
                <label for="caspio_client_secret">Client Secret</label>
                <input type="password" id="caspio_client_secret" name="caspio_client_secret" required placeholder="Your Caspio API Client Secret">
            </div>
            <button type="submit">Connect to Caspio</button>
        </form>
        <div class="info">Your credentials are only used to connect to your Caspio account.</div>
        <div class="help">
            Find your credentials in Caspio under Account &rarr; Web Services API.
            Create or select an API profile and copy its Client ID and Client Secret.
        </div>
    </div>
</body>
</html>
"""

INFO_PAGE = """<!DOCTYPE html>
<html>
<head><title>Caspio MCP Server</title></head>
<body style="font-family: sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;">
  <h1>Caspio MCP Server</h1>
  <p>This is a Model Context Protocol server for Caspio databases.</p>
  <h2>Connect with Claude or ChatGPT:</h2>
  <ol>
    <li>Add a custom connector</li>
    <li>Enter this URL: <code>{mcp_url}</code></li>
    <li>You'll be prompted to enter your Caspio credentials</li>
  </ol>
  <h2>Endpoints:</h2>
  <ul>
    <li><code>/mcp</code> - MCP endpoint</li>
    <li><code>/.well-known/oauth-protected-resource</code> - OAuth metadata</li>
    <li><code>/health</code> - Health check</li>
  </ul>
</body>
</html>"""


def render_authorize_page(auth_id: str, error: str = "") -> str:
    error_html = f'<div class="error">{escape(error)}</div>' if error else ""
    return AUTHORIZE_PAGE.format(auth_id=escape(auth_id), error=error_html)


def render_info_page(base_url: str) -> str:
    return INFO_PAGE.format(mcp_url=escape(f"{base_url}/mcp"))
