#!/usr/bin/env python3
"""Fake JSON-RPC server for end-to-end testing.

Reads newline-delimited JSON-RPC from stdin, answers on stdout and logs
to stderr. Supports:
- echo: returns params unchanged
- add / subtract: arithmetic on params a and b
- error: returns an error response
- notify: sends a testNotification, then answers
- ping: returns "pong"
- burst: returns count frames in a single write
- ask: sends a request *to* the client and answers once it replies
- exit: exits with params["code"] without answering
"""

import json
import sys


def log(*args):
    print("[fake-server]", *args, file=sys.stderr, flush=True)


def write(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def make_result(request_id, result):
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def make_error(request_id, code, message, data=None):
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def handle(msg, pending_ask):
    request_id = msg.get("id")
    method = msg.get("method")
    params = msg.get("params") or {}

    if method is None:
        # A response to our "ask" request.
        if pending_ask:
            origin = pending_ask.pop()
            write(make_result(origin, {"client_replied": msg}))
        return

    log("Received request:", method)

    if method == "echo":
        resp = make_result(request_id, msg.get("params"))
    elif method == "add":
        resp = make_result(request_id, {"sum": params["a"] + params["b"]})
    elif method == "subtract":
        resp = make_result(request_id, {"difference": params["a"] - params["b"]})
    elif method == "error":
        resp = make_error(request_id, -32000, "Intentional error for testing")
    elif method == "notify":
        write({"jsonrpc": "2.0", "method": "testNotification", "params": {"message": "Hello from server"}})
        resp = make_result(request_id, {"notificationSent": True})
    elif method == "ping":
        resp = make_result(request_id, "pong")
    elif method == "burst":
        frames = [json.dumps(make_result(request_id, i)) for i in range(params.get("count", 3))]
        sys.stdout.write("\n".join(frames) + "\n")
        sys.stdout.flush()
        return
    elif method == "ask":
        pending_ask.append(request_id)
        write({"jsonrpc": "2.0", "id": "server-1", "method": "client/info"})
        return
    elif method == "exit":
        sys.exit(params.get("code", 0))
    else:
        resp = make_error(request_id, -32601, "Method not found", {"method": method})

    if request_id is not None:
        write(resp)


def main():
    log("Echo server started, waiting for requests...")
    pending_ask = []
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue

        try:
            msg = json.loads(line)
        except json.JSONDecodeError as exc:
            log("Error parsing request:", exc)
            continue

        handle(msg, pending_ask)

    log("Input stream closed, exiting")


if __name__ == "__main__":
    main()
