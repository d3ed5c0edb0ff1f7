# app.py
import os

from agrifair import create_app

app = create_app()

# -----------------------------------------------------
#   RUN SERVER
# -----------------------------------------------------
if __name__ == "__main__":
    debug = os.environ.get("FLASK_DEBUG", "1") in ("1", "true", "True")
    app.run(debug=debug, host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
