import logging
import os

from werkzeug.middleware.proxy_fix import ProxyFix

from settings import LOG_LEVEL
from webapp import create_app

logging.basicConfig(level=LOG_LEVEL)
log = logging.getLogger("bootcamp-checkout")

app = create_app()

# Trust the hosting proxy so scheme/host are correct
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)


# ---------------------------------------------------------------
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 8080)), debug=False)
