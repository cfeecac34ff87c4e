"""Html pages for the end of the install callback."""
from html import escape

PAGE_STYLE = """
      body {
        font-family: sans-serif;
        text-align: center;
        padding: 50px;
        background-color: #f6f6f7;
      }
      .container {
        background: white;
        padding: 2rem;
        border-radius: 8px;
        box-shadow: 0 2px 4px rgba(0,0,0,0.1);
        max-width: 500px;
        margin: 0 auto;
      }
      h1 { color: %(heading_color)s; }
      .button {
        display: inline-block;
        padding: 10px 20px;
        background-color: #008060;
        color: white;
        text-decoration: none;
        border-radius: 4px;
        margin-top: 20px;
      }"""


PAGE_FMT = """<!DOCTYPE html>
<html>
  <head>
    <title>%(title)s</title>
    <style>%(style)s
    </style>
  </head>
  <body>
    <div class="container">
%(body)s
    </div>
  </body>
</html>"""


def render_page(title, body, heading_color):
    return PAGE_FMT % {
        "title": escape(title),
        "style": PAGE_STYLE % {"heading_color": heading_color},
        "body": body,
    }


def render_installed_page(shop_host):
    shop_host = escape(shop_host)
    body = (
        "      <h1>App Installed Successfully!</h1>\n"
        f"      <p>Your app has been installed to {shop_host}</p>\n"
        f'      <a href="https://{shop_host}/admin/apps" class="button">Go to Apps</a>'
    )
    return render_page("Success", body, heading_color="#008060")


def render_failure_page(message):
    # Only generic messages end up here, never exception text.
    body = (
        "      <h1>Installation Failed</h1>\n"
        "      <p>Please try again</p>\n"
        f"      <p>{escape(message)}</p>"
    )
    return render_page("Error", body, heading_color="#d82c0d")
