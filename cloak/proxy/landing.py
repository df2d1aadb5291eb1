"""Static page for generating cloaked links by hand."""
from __future__ import annotations

import html
from typing import Optional

_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Twitter Cloak</title>
  <meta property="og:title" content="Twitter Cloak" />
  <meta property="og:description" content="Generate proxy links to content blocked on Twitter while preserving Twitter Card previews of the original content." />
  <style>
    body { font-family: sans-serif; background: #f3f4f6; padding: 2.5rem 0; }
    main { max-width: 28rem; margin: 0 auto; }
    .card { background: #fff; padding: 1.5rem; box-shadow: 0 4px 12px rgba(0,0,0,.1); }
    input { width: 100%; box-sizing: border-box; padding: .5rem .75rem; margin-bottom: 1rem; }
    .note { color: #6b7280; font-size: .875rem; }
  </style>
</head>
<body>
  <main>
    <h1>Twitter Cloak</h1>
    <p>Generate proxy links to content blocked on Twitter while preserving Twitter Card previews of the original content.</p>
    <div class="card">
      <label for="url">Enter URL:</label>
      <input id="url" type="text" />
      <button id="generate">Generate</button>
      <label for="generatedUrl">Generated URL:</label>
      <input id="generatedUrl" type="text" readonly />
      <button id="copy" disabled>Copy</button>
      <span id="successMessage" hidden>Copied!</span>
    </div>
    <p class="note">The card preview's domain name will be this proxy's instead of the original. Card preview content is cached for __FRESHNESS_MINUTES__ minutes.</p>
  </main>
  <script>
    const base = "__PUBLIC_URL__" || window.location.origin + "/";
    const urlInput = document.getElementById('url');
    const generatedUrlInput = document.getElementById('generatedUrl');
    const copyButton = document.getElementById('copy');
    const successMessage = document.getElementById('successMessage');

    document.getElementById('generate').addEventListener('click', () => {
      const bytes = new TextEncoder().encode(urlInput.value);
      const token = btoa(String.fromCharCode(...bytes));
      generatedUrlInput.value = `${base}?__PARAM__=${encodeURIComponent(token)}`;
      copyButton.disabled = false;
    });

    copyButton.addEventListener('click', async () => {
      await navigator.clipboard.writeText(generatedUrlInput.value);
      successMessage.hidden = false;
      setTimeout(() => { successMessage.hidden = true; }, 2000);
    });
  </script>
</body>
</html>
"""


def render_landing_page(*, query_param: str = "url", public_url: Optional[str] = None, freshness_minutes: int = 5) -> str:
    return (
        _TEMPLATE.replace("__PUBLIC_URL__", html.escape(public_url or "", quote=True))
        .replace("__PARAM__", html.escape(query_param, quote=True))
        .replace("__FRESHNESS_MINUTES__", str(freshness_minutes))
    )
