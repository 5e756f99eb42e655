"""Browser-facing HTML pages for the OAuth handshake."""

import html
import json
from urllib.parse import urlencode, urlsplit

from fastapi.responses import HTMLResponse

CONSOLE_PATH = "/app/me"

NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Referrer-Policy": "no-referrer",
}

_PAGE_STYLE = (
    "body{font-family:system-ui,-apple-system,sans-serif;max-width:36rem;"
    "margin:4rem auto;padding:0 1rem;color:#1f2328}"
    "p{white-space:pre-wrap;line-height:1.5}"
)


def script_string(value: str) -> str:
    """JSON string literal safe to embed inside an inline <script>."""
    encoded = json.dumps(value)
    # keep "</script>" and HTML comment openers from closing the element
    return encoded.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


def oauth_error_page(status_code: int, title: str, message: str) -> HTMLResponse:
    """Render a fixed, escaped error page."""
    body = (
        "<!doctype html>"
        '<html lang="en"><head><meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        f"<title>{html.escape(title)}</title>"
        f"<style>{_PAGE_STYLE}</style></head><body>"
        f"<h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(message)}</p>"
        f'<p><a href="{html.escape(CONSOLE_PATH)}">Back to console</a></p>'
        "</body></html>"
    )
    return HTMLResponse(body, status_code=status_code, headers=dict(NO_STORE_HEADERS))


def oauth_success_page(*, api_key: str, storage_key: str, redirect_to: str) -> HTMLResponse:
    """Hand the issued key to the browser's localStorage, then navigate away.

    The key only ever appears inside the script body; it is never placed in a
    header, a URL or the log.
    """
    script = (
        "(function(){"
        "try{"
        f"localStorage.setItem({script_string(storage_key)},{script_string(api_key)});"
        "}catch(e){}"
        f"location.replace({script_string(redirect_to)});"
        "})();"
    )
    body = (
        "<!doctype html>"
        '<html lang="en"><head><meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        "<title>Signed in</title>"
        f"<style>{_PAGE_STYLE}</style></head><body>"
        "<p>Signed in. Redirecting&hellip;</p>"
        f"<script>{script}</script>"
        "</body></html>"
    )
    return HTMLResponse(body, status_code=200, headers=dict(NO_STORE_HEADERS))


def app_deep_links(exchange_token: str, deep_link_url: str, android_package: str = "") -> tuple[str, str]:
    """Custom-scheme link and Android intent link carrying the exchange token."""
    query = urlencode({"exchange_token": exchange_token})
    deep_link = f"{deep_link_url}?{query}"
    parts = urlsplit(deep_link_url)
    intent = f"intent://{parts.netloc}{parts.path}?{query}#Intent;scheme={parts.scheme};"
    if android_package:
        intent += f"package={android_package};"
    return deep_link, intent + "end"


def oauth_app_return_page(*, exchange_token: str, deep_link_url: str, android_package: str = "") -> HTMLResponse:
    """Send the browser back into the native app with a single-use exchange token.

    The custom-scheme link is followed immediately; Android additionally
    gets an intent link, since some browsers ignore custom schemes.
    """
    deep_link, intent_link = app_deep_links(exchange_token, deep_link_url, android_package)
    script = (
        "(function(){"
        f"var deep={script_string(deep_link)};"
        f"var intent={script_string(intent_link)};"
        'var ua=String((navigator&&navigator.userAgent)||"");'
        "var isAndroid=/android/i.test(ua);"
        'var alt=document.getElementById("open_intent");'
        'if(alt&&isAndroid){alt.style.display="inline";}'
        "try{location.href=deep;}catch(e){}"
        "if(isAndroid){setTimeout(function(){try{location.href=intent;}catch(e){}},400);}"
        "})();"
    )
    body = (
        "<!doctype html>"
        '<html lang="en"><head><meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        "<title>Signed in</title>"
        f"<style>{_PAGE_STYLE}</style></head><body>"
        "<h1>Signed in</h1>"
        "<p>Returning to the app. If nothing happens, use the link below.</p>"
        f'<p><a id="open" href="{html.escape(deep_link)}">Open the app</a> '
        f'<a id="open_intent" style="display:none" href="{html.escape(intent_link)}">Open on Android</a></p>'
        f"<script>{script}</script>"
        "</body></html>"
    )
    return HTMLResponse(body, status_code=200, headers=dict(NO_STORE_HEADERS))
