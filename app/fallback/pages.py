from fastapi.responses import HTMLResponse, PlainTextResponse

BLOG_NOT_FOUND_TEXT = "Blog not found"

SERVICE_UNAVAILABLE_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>Blog Service Temporarily Unavailable</title>
  <style>
    body { font-family: Arial, sans-serif; text-align: center; padding: 50px; }
    .error { color: #e74c3c; }
  </style>
</head>
<body>
  <h1 class="error">Blog Service Temporarily Unavailable</h1>
  <p>We're working to restore the blog service. Please try again later.</p>
  <a href="/">&larr; Back to Main Site</a>
</body>
</html>
"""


def blog_not_found_response() -> PlainTextResponse:
    return PlainTextResponse(BLOG_NOT_FOUND_TEXT, status_code=404)


def service_unavailable_response() -> HTMLResponse:
    return HTMLResponse(SERVICE_UNAVAILABLE_PAGE, status_code=503)
