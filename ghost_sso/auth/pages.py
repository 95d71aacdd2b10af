"""
HTML pages shown to the browser when a login cannot complete.

Pages only ever carry a stable error code and a generic sentence: no
exception text, tokens, identifiers or secrets.
"""

from html import escape
from typing import Optional

from fastapi.responses import HTMLResponse

from ghost_sso.errors import ErrorCode


ERROR_MESSAGES = {
    ErrorCode.UPSTREAM_AUTH: "The identity provider could not confirm your sign-in. Please try again.",
    ErrorCode.INTEGRATION: "The blog is temporarily unable to complete your sign-in. Please try again shortly.",
    ErrorCode.USER_NOT_FOUND: "Your account is not allowed to access the staff area.",
    ErrorCode.FATAL_CONFIG: "Sign-in is not available because the blog is not fully configured. Contact your administrator.",
    ErrorCode.DATA_ACCESS: "The blog is temporarily unable to complete your sign-in. Please try again shortly.",
    ErrorCode.FATAL: "An unexpected error occurred during authentication. Please try again.",
}


def message_for(code: str) -> str:
    try:
        return ERROR_MESSAGES[ErrorCode(code)]
    except ValueError:
        return ERROR_MESSAGES[ErrorCode.FATAL]


def render_error_page(
    code: str,
    retry_url: Optional[str] = None,
    status_code: int = 500,
    title: str = "Authentication Failed",
) -> HTMLResponse:
    """
    Render error page for authentication failures.

    Args:
        code: Error code (unknown codes fall back to the generic message)
        retry_url: Where the "Try Again" button points, if shown
        status_code: HTTP status code
        title: Page title

    Returns:
        HTMLResponse with the code and a generic message
    """
    retry_button = (
        f'<a href="{escape(retry_url, quote=True)}" class="button">Try Again</a>'
        if retry_url
        else ""
    )

    html_content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
            background: #f3f4f6;
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
            margin: 0;
        }}
        .container {{
            background: white;
            border-radius: 12px;
            padding: 40px;
            max-width: 480px;
            text-align: center;
            box-shadow: 0 10px 40px rgba(0,0,0,0.1);
        }}
        h1 {{ color: #1f2937; font-size: 24px; }}
        .message {{ color: #6b7280; line-height: 1.6; }}
        .code {{ color: #9ca3af; font-size: 13px; font-family: monospace; }}
        .button {{
            display: inline-block;
            margin-top: 24px;
            background: #15171a;
            color: white;
            padding: 12px 28px;
            border-radius: 8px;
            text-decoration: none;
        }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{escape(title)}</h1>
        <p class="message">{escape(message_for(code))}</p>
        <p class="code">Error code: {escape(code)}</p>
        {retry_button}
    </div>
</body>
</html>
"""
    return HTMLResponse(content=html_content, status_code=status_code)
