import os
import io
import re
import secrets
import logging
from flask import Flask, request, send_file, g, jsonify
from werkzeug.utils import secure_filename
from werkzeug.exceptions import RequestEntityTooLarge, HTTPException
from typing import Optional, Tuple

from utfhate import (
    COMMANDS, COUNT_MODES, VERSION, ConfigurationError, SimpleLogger, Utf8Filter, build_config,
)

# --- Flask App Initialization ---
app = Flask(__name__)

# --- Configuration ---
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', secrets.token_hex(16))

app.config['MAX_CONTENT_LENGTH'] = 10 * 1024 * 1024  # 10 MB limit

ALLOWED_EXTENSIONS = {'txt', 'log', 'py', 'js', 'html', 'css', 'json', 'xml', 'csv', 'md', 'rst'}

# --- Production Logging Setup ---
if not app.debug:
    log_handler = logging.FileHandler('error.log', delay=True)
    log_handler.setLevel(logging.ERROR)
    log_formatter = logging.Formatter('%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]')
    log_handler.setFormatter(log_formatter)
    app.logger.addHandler(log_handler)
    app.logger.setLevel(logging.INFO)
    app.logger.info('Application startup in production mode')
else:
    app.logger.setLevel(logging.DEBUG)
    app.logger.info('Application startup in debug mode')


# --- Request Hooks ---
@app.before_request
def before_request():
    g.csp_nonce = secrets.token_hex(16)

@app.after_request
def apply_security_headers(response):
    nonce = getattr(g, 'csp_nonce', secrets.token_hex(16))

    csp_policy_parts = [
        "default-src 'self'",
        f"script-src 'self' 'nonce-{nonce}'",
        "object-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
    ]

    response.headers['Content-Security-Policy'] = "; ".join(csp_policy_parts)
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    if request.is_secure: # Only send HSTS over HTTPS
         response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    return response


# --- WebLogger (captures filter diagnostics for the response) ---
class WebLogger(SimpleLogger):
    def __init__(self, level: int = SimpleLogger.INFO):
        super().__init__(level, use_colors=False, stream=io.StringIO())
        self.log_capture = self.stream

    def _log(self, level: int, msg: str, *args, color: Optional[str] = None) -> None:
        if level < self.level:
            return
        if args:
            msg = msg % args

        clean_msg = re.sub(r'\x1b\[[0-9;]*m', '', msg)
        self.log_capture.write(clean_msg + "\n")

    def get_captured_logs(self) -> str:
        return self.log_capture.getvalue()

    def close(self):
        pass


class BadInput(Exception):
    """Request did not carry usable input."""


# --- Helper function for allowed file extensions ---
def allowed_file(filename):
    return '.' in filename and \
           filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def _read_input() -> Tuple[bytes, str]:
    """Return the raw input bytes and a base name for downloads."""
    file_input = request.files.get('file_input')
    if file_input and file_input.filename:
        if not allowed_file(file_input.filename):
            raise BadInput("Invalid file type. Allowed types: " + ", ".join(sorted(ALLOWED_EXTENSIONS)))
        filename = secure_filename(file_input.filename)
        if not filename:
            raise BadInput("Invalid filename provided.")
        return file_input.read(), filename
    text_input = request.form.get('text_input', '')
    if text_input:
        return text_input.encode('utf-8'), "pasted_text.txt"
    raise BadInput("Please provide text input or upload a file.")


def _run_filter():
    """Build a config from the form, filter the input, return (output, stats, logs, name)."""
    config = build_config(
        request.form.get('command', 'search'),
        replacement=request.form.get('replacement'),
        count_mode=request.form.get('count_mode') or None,
        verbose=bool(request.form.get('verbose')),
        describe=bool(request.form.get('describe')),
    )
    data, filename = _read_input()

    web_logger = WebLogger(level=SimpleLogger.INFO)
    utf_filter = Utf8Filter(config, logger=web_logger)
    out = io.BytesIO()
    stats = utf_filter.run(io.BytesIO(data), out)
    app.logger.debug(f"Filtered {len(data)} bytes with '{config.command.name}'")
    return out.getvalue(), stats, web_logger.get_captured_logs(), filename


# --- Error Handlers ---
@app.errorhandler(HTTPException)
def handle_http_exception(e):
    app.logger.warning(f'HTTP Exception {e.code} ({e.name}): {request.path} - {e.description}')
    response = e.get_response()
    response.data = jsonify(
        error=e.name,
        message=e.description,
        code=e.code
    ).data
    response.content_type = "application/json"
    return response

@app.errorhandler(ConfigurationError)
def handle_configuration_error(e):
    app.logger.info(f'Rejected configuration: {e}')
    return jsonify(error="Invalid Configuration", message=str(e)), 400

@app.errorhandler(BadInput)
def handle_bad_input(e):
    return jsonify(error="Bad Request", message=str(e)), 400

@app.errorhandler(Exception) # Catch non-HTTP exceptions (like 500s)
def handle_generic_exception(e):
    app.logger.error(f'Unhandled Exception: {e}', exc_info=True)
    # Avoid leaking details in production
    error_message = "An internal server error occurred." if not app.debug else str(e)
    return jsonify(error="Internal Server Error", message=error_message), 500

# Specific handler for file size limit (inherits from HTTPException)
@app.errorhandler(RequestEntityTooLarge)
def handle_file_too_large(e):
    app.logger.warning(f'File upload rejected: Too large (limit: {app.config["MAX_CONTENT_LENGTH"]} bytes)')
    return jsonify(error="File Too Large", message=f"The file must be less than {app.config['MAX_CONTENT_LENGTH'] // 1024 // 1024}MB."), 413


# --- Routes ---
@app.route('/', methods=['GET'])
def index():
    return jsonify(
        name="utfhate",
        version=VERSION,
        commands=list(COMMANDS),
        count_modes=list(COUNT_MODES),
    )


@app.route('/filter', methods=['POST'])
def filter_route():
    output, stats, log_output, _ = _run_filter()
    return jsonify(
        output=output.decode('utf-8', errors='replace'),
        stats={
            'lines_read': stats.lines_read,
            'lines_with_sequences': stats.lines_with_sequences,
            'characters': stats.characters,
            'bytes': stats.bytes,
            'truncated': stats.truncated,
        },
        log=log_output,
    )


@app.route('/download', methods=['POST'])
def download_route():
    output, _, _, filename = _run_filter()
    command = request.form.get('command', 'search')

    mem_file = io.BytesIO(output)
    return send_file(
        mem_file,
        mimetype='application/octet-stream',
        as_attachment=True,
        download_name=f"{command}_{filename}"
    )


is_debug = os.environ.get('FLASK_DEBUG', '0') == '1'

if __name__ == '__main__':
    # Run with Flask's built-in server only for development/debugging
    if is_debug:
        app.logger.info("Starting Flask development server...")
        app.run(debug=True, host='0.0.0.0', port=5001)
    else:
         app.logger.warning("Running with __main__ guard, but FLASK_DEBUG is not '1'.")
         app.logger.warning("For production, use a WSGI server like Gunicorn: ")
         app.logger.warning("gunicorn --bind 0.0.0.0:8000 app:app")
