"""
Signed HLS Relay Server
-----------------------
Relays HLS playlists (.m3u8) and media segments (.ts) from an authenticated
media platform. Clients hold only a login token; the relay exchanges it for
short-lived video tokens, signs each upstream request and rewrites playlists so
that every segment fetch comes back through this server.

Features:
- CORS headers for cross-origin playback
- Transparent video-token refresh and retry on expiry
- Unbuffered segment streaming with configurable chunk size
- Single-host allow-listing for playlist and segment URLs
- Optional intranet address mapping with load balancing and live reload
- Dual-mode launcher: Flask dev server or Gunicorn production server
"""

import multiprocessing
import os

from hls_relay import create_app

# ---------------------------------------------------------------------------
# Flask application setup (configuration comes from the environment)
# ---------------------------------------------------------------------------
app = create_app()

# ---------------------------------------------------------------------------
# Entrypoint: run with Flask dev server or Gunicorn
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    use_gunicorn = os.environ.get("USE_GUNICORN", "").lower() in ("1", "true", "yes")
    port = os.environ.get("PORT", "3000")

    if use_gunicorn:
        # Run under Gunicorn
        from gunicorn.app.wsgiapp import run
        import sys

        workers = int(os.environ.get("WORKERS", multiprocessing.cpu_count()))
        # Each worker thread handles one request; segment relays hold theirs
        # for the length of the download
        threads = int(os.environ.get("THREADS", 8))
        sys.argv = [
            "gunicorn",
            "-w", str(workers),
            "--threads", str(threads),
            "-b", f"0.0.0.0:{port}",
            "--log-level", os.environ.get("LOG_LEVEL", "info").lower(),
            "--access-logfile", os.environ.get("ACCESS_LOGFILE", "-"),
            "--error-logfile", os.environ.get("ERROR_LOGFILE", "-"),
            "--capture-output",
            "app:app",
        ]
        run()
    else:
        # Run with Flask's built-in dev server
        app.run(host="0.0.0.0", port=int(port), debug=True, threaded=True)
