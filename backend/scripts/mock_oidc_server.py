#!/usr/bin/env python3
"""
Local mock OpenID Connect provider - for manual end-to-end runs of the linking flow

ID tokens are HS256, signed with the client secret, so no key material is needed.

Usage:
  1. Start this script: python backend/scripts/mock_oidc_server.py
  2. Configure the backend:
     export OIDC_ISSUER=http://localhost:9090
     export OIDC_CLIENT_ID=local-client
     export OIDC_CLIENT_SECRET=local-secret
     export PUBLIC_BASE_URL=http://localhost:3000
  3. Start the backend, run the link command in Discord and open the URL

The redirect URI is sent by the backend ({PUBLIC_BASE_URL}/oauth/callback);
nothing has to be configured here.
"""

import base64
import hashlib
import json
import secrets
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, unquote, urlencode, urlparse

from jose import jwt

PORT = 9090
ISSUER = f"http://localhost:{PORT}"

# In-memory: code -> {redirect_uri, nonce, code_challenge}; access_token -> sub
_codes: dict = {}
_tokens: dict = {}

# Mock user (edit freely)
MOCK_USER = {
    "sub": "local-user-1",
    "preferred_username": "local.user",
    "email": "local@test.com",
    "name": "Local User",
}

EXPECTED_CLIENT_ID = "local-client"
EXPECTED_CLIENT_SECRET = "local-secret"


def _s256(verifier: str) -> str:
    return base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")


class MockOIDCHandler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        print(f"[MockOIDC] {args[0]}")

    def _redirect(self, location: str):
        self.send_response(302)
        self.send_header("Location", location)
        self.end_headers()

    def _json(self, data: dict, status: int = 200):
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(json.dumps(data).encode("utf-8"))

    def _read_form(self) -> dict:
        length = int(self.headers.get("Content-Length", 0))
        if length == 0:
            return {}
        body = self.rfile.read(length).decode("utf-8")
        return {k: v[0] for k, v in parse_qs(body).items()}

    def do_GET(self):
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/") or "/"
        q = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        if path == "/.well-known/openid-configuration":
            self._json(
                {
                    "issuer": ISSUER,
                    "authorization_endpoint": f"{ISSUER}/authorize",
                    "token_endpoint": f"{ISSUER}/token",
                    "userinfo_endpoint": f"{ISSUER}/userinfo",
                    "jwks_uri": f"{ISSUER}/jwks",
                    "response_types_supported": ["code"],
                    "subject_types_supported": ["public"],
                    "id_token_signing_alg_values_supported": ["HS256"],
                    "code_challenge_methods_supported": ["S256"],
                    "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
                }
            )

        elif path == "/jwks":
            self._json({"keys": []})

        elif path == "/authorize":
            redirect_uri = q.get("redirect_uri", "")
            state = q.get("state", "")
            if not redirect_uri:
                self._json({"error": "redirect_uri required"}, 400)
                return
            if q.get("client_id") != EXPECTED_CLIENT_ID:
                self._json({"error": "unauthorized_client"}, 400)
                return
            sep = "&" if "?" in redirect_uri else "?"
            if q.get("deny"):
                # /authorize?...&deny=1 simulates a refused consent
                params = {"error": "access_denied", "error_description": "User denied consent", "state": state}
                self._redirect(f"{redirect_uri}{sep}{urlencode(params)}")
                return
            code = secrets.token_urlsafe(16)
            _codes[code] = {
                "redirect_uri": redirect_uri,
                "nonce": q.get("nonce"),
                "code_challenge": q.get("code_challenge"),
            }
            self._redirect(f"{redirect_uri}{sep}{urlencode({'code': code, 'state': state})}")

        elif path == "/userinfo":
            auth = self.headers.get("Authorization")
            if not auth or not auth.startswith("Bearer "):
                self._json({"error": "unauthorized"}, 401)
                return
            if auth[7:] not in _tokens:
                self._json({"error": "invalid_token"}, 401)
                return
            self._json(MOCK_USER)

        else:
            self._json({"error": "not found"}, 404)

    def do_POST(self):
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/") or "/"

        if path != "/token":
            self._json({"error": "not found"}, 404)
            return

        data = self._read_form()
        code = data.get("code", "")
        redirect_uri = data.get("redirect_uri", "")

        # client_secret_post or client_secret_basic (form-encoded credentials)
        client_id = data.get("client_id", "")
        client_secret = data.get("client_secret", "")
        auth = self.headers.get("Authorization")
        if not client_id and auth and auth.startswith("Basic "):
            try:
                decoded = base64.b64decode(auth[6:].strip()).decode("utf-8")
            except ValueError:
                self._json({"error": "invalid_client"}, 401)
                return
            raw_id, _, raw_secret = decoded.partition(":")
            client_id, client_secret = unquote(raw_id), unquote(raw_secret)

        if client_id != EXPECTED_CLIENT_ID or client_secret != EXPECTED_CLIENT_SECRET:
            self._json({"error": "invalid_client"}, 401)
            return
        grant = _codes.pop(code, None)
        if grant is None:
            self._json({"error": "invalid_grant", "error_description": "invalid code"}, 400)
            return
        if grant["redirect_uri"] != redirect_uri:
            self._json({"error": "invalid_grant", "error_description": "redirect_uri mismatch"}, 400)
            return
        if grant["code_challenge"] and _s256(data.get("code_verifier", "")) != grant["code_challenge"]:
            self._json({"error": "invalid_grant", "error_description": "PKCE verification failed"}, 400)
            return

        access_token = "mock_" + secrets.token_urlsafe(16)
        _tokens[access_token] = MOCK_USER["sub"]

        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "sub": MOCK_USER["sub"],
            "aud": EXPECTED_CLIENT_ID,
            "iat": now,
            "exp": now + 300,
            "preferred_username": MOCK_USER["preferred_username"],
        }
        if grant["nonce"]:
            claims["nonce"] = grant["nonce"]
        id_token = jwt.encode(claims, EXPECTED_CLIENT_SECRET, algorithm="HS256")

        self._json({"access_token": access_token, "token_type": "Bearer", "expires_in": 300, "id_token": id_token})


def main():
    server = HTTPServer(("", PORT), MockOIDCHandler)
    print(f"Mock OIDC provider: {ISSUER}")
    print("  GET  /.well-known/openid-configuration")
    print("  GET  /authorize  -> redirect_uri?code=...&state=... (add deny=1 to refuse)")
    print("  POST /token      -> access_token + HS256 id_token")
    print("  GET  /userinfo   -> user claims (Bearer token)")
    print(f"Client ID / Secret: {EXPECTED_CLIENT_ID} / {EXPECTED_CLIENT_SECRET}")
    print("Ctrl+C to quit")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.shutdown()


if __name__ == "__main__":
    main()
