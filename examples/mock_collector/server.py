# examples/mock_collector/server.py - Minimal intake endpoint for local testing
"""
Accepts batches on /intake/v2/events and prints one line per record.

Run with:
    python examples/mock_collector/server.py 8200
"""

from http.server import BaseHTTPRequestHandler, HTTPServer
import json
import sys


class IntakeHandler(BaseHTTPRequestHandler):

    def do_POST(self):
        if self.path != '/intake/v2/events':
            self.send_response(404)
            self.end_headers()
            return

        length = int(self.headers.get('Content-Length', 0))
        body = self.rfile.read(length).decode('utf-8')

        print(f"--- batch from {self.headers.get('User-Agent')} "
              f"(auth: {'yes' if self.headers.get('Authorization') else 'no'})")
        for line in body.splitlines():
            record = json.loads(line)
            kind = next(iter(record))
            print(f"  {kind}: {json.dumps(record[kind])[:120]}")

        self.send_response(202)
        self.end_headers()

    def log_message(self, format, *args):
        """Silence per-request access logs"""
        pass


if __name__ == '__main__':
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8200
    print(f"Mock collector listening on http://localhost:{port}")
    HTTPServer(('0.0.0.0', port), IntakeHandler).serve_forever()
