# examples/flask_app/app.py - Sample Flask application reporting to APM
"""
Example Flask application instrumented with the APM agent.

Run with:
    APM_ENABLE=1 APM_SERVICE_NAME=flask-demo python examples/flask_app/app.py
"""

from flask import Flask, got_request_exception, request, jsonify
import time
import warnings

import apm_agent
from apm_agent.agent import init
from apm_agent.middleware import ApmMiddleware

app = Flask(__name__)

agent = init()
app.wsgi_app = ApmMiddleware(app.wsgi_app, agent)


def report_handled_error(sender, exception, **extra):
    """Flask answers view errors with a 500 itself; report them too"""
    agent.capture_exception(exception)


got_request_exception.connect(report_handled_error, app)


@app.route('/')
def root():
    """Root endpoint"""
    return jsonify({"message": "Flask APM demo", "status": "healthy"})


@app.route('/health')
def health_check():
    """Health check endpoint"""
    return jsonify({"status": "healthy", "trace_id": apm_agent.get_trace_id()})


@app.route('/predict', methods=['POST'])
def predict():
    """
    Prediction endpoint.

    Expects JSON body with:
    {
        "data": [list of floats],
        "model_name": "model name"
    }
    """
    data = request.json
    if not data or 'data' not in data:
        return jsonify({"error": "Invalid request"}), 400

    input_data = data.get('data', [])
    if data.get('model_name') == 'legacy':
        warnings.warn("legacy model is deprecated", UserWarning)

    # Simulate inference
    time.sleep(0.03)

    # Empty input raises ZeroDivisionError, reported as an exception
    prediction = sum(input_data) / len(input_data)

    return jsonify({
        "prediction": prediction,
        "execution_id": apm_agent.get_execution_id(),
    })


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=False)
