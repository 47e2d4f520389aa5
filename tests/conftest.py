import pytest


@pytest.fixture
def product_html() -> str:
    return """
    <html><head>
      <title>  Classic Oxford Shirt  </title>
      <meta property="og:image" content="/img/shirt.jpg">
    </head><body>
      <img src="/static/logo.png" width="120" height="40">
    </body></html>
    """
