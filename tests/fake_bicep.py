"""Stand-in for ``bicep jsonrpc`` used by the test suite.

Run through the wrapper script generated by ``conftest.make_fake_bicep``.
Behavior is driven by environment variables the wrapper exports:

FAKE_BICEP_VERSION   version reported by bicep/version (default 0.37.0)
FAKE_BICEP_BEHAVIOR  "serve" (default), "exit" (exit 3 without connecting),
                     "hang" (never connect)
FAKE_BICEP_LOG       file receiving one line per request method

Besides the bicep/* methods, two test-only methods exist:
test/sleep {seconds, value}  replies {"value": value} after sleeping
test/exit {code}             exits the process without replying
"""

import json
import os
import socket
import sys
import threading
import time

VERSION = os.environ.get("FAKE_BICEP_VERSION", "0.37.0")
BEHAVIOR = os.environ.get("FAKE_BICEP_BEHAVIOR", "serve")
LOG_PATH = os.environ.get("FAKE_BICEP_LOG")

_log_lock = threading.Lock()


def _range(line: int = 0) -> dict:
    return {"start": {"line": line, "char": 0}, "end": {"line": line, "char": 10}}


def _log_method(method: str) -> None:
    if not LOG_PATH:
        return
    with _log_lock, open(LOG_PATH, "a", encoding="utf-8") as f:
        f.write(method + "\n")


def handle(method: str, params: dict) -> dict:
    path = params.get("path", "")
    if method == "bicep/version":
        return {"version": VERSION}
    if method == "bicep/compile":
        if path.endswith("error.bicep"):
            return {
                "success": False,
                "diagnostics": [
                    {
                        "source": path,
                        "range": _range(2),
                        "level": "Error",
                        "code": "BCP018",
                        "message": 'Expected the "=" character at this location.',
                    }
                ],
            }
        return {
            "success": True,
            "diagnostics": [
                {
                    "source": path,
                    "range": _range(0),
                    "level": "Warning",
                    "code": "no-unused-params",
                    "message": 'Parameter "location" is declared but never used.',
                }
            ],
            "contents": json.dumps({"$schema": "template", "source": path}),
        }
    if method == "bicep/compileParams":
        return {
            "success": True,
            "diagnostics": [],
            "parameters": json.dumps(params.get("parameterOverrides", {})),
            "template": "{}",
        }
    if method == "bicep/getMetadata":
        return {
            "metadata": [{"name": "description", "value": "Storage account"}],
            "parameters": [
                {
                    "range": _range(1),
                    "name": "location",
                    "type": {"name": "string"},
                    "description": "Deployment location",
                }
            ],
            "outputs": [{"range": _range(5), "name": "id"}],
            "exports": [{"range": _range(7), "name": "sku", "kind": "Type"}],
        }
    if method == "bicep/getDeploymentGraph":
        return {
            "nodes": [
                {
                    "range": _range(3),
                    "name": "storage",
                    "type": "Microsoft.Storage/storageAccounts",
                    "isExisting": False,
                },
                {
                    "range": _range(9),
                    "name": "mod",
                    "type": "<module>",
                    "isExisting": False,
                    "relativePath": "./mod.bicep",
                },
            ],
            "edges": [{"source": "mod", "target": "storage"}],
        }
    if method == "bicep/getFileReferences":
        return {"filePaths": [path, path.replace("main", "mod")]}
    if method == "bicep/getSnapshot":
        return {"snapshot": json.dumps({"metadata": params.get("metadata")})}
    if method == "bicep/format":
        return {"contents": f"// formatted {path}\n"}
    if method == "test/sleep":
        time.sleep(float(params.get("seconds", 0)))
        return {"value": params.get("value")}
    if method == "test/exit":
        sys.stdout.flush()
        os._exit(int(params.get("code", 1)))
    raise LookupError(method)


def read_message(stream) -> dict | None:
    headers: dict[str, str] = {}
    while True:
        line = stream.readline()
        if not line:
            return None
        line = line.rstrip(b"\r\n")
        if not line:
            break
        name, _, value = line.decode("ascii").partition(":")
        headers[name.strip().lower()] = value.strip()
    body = stream.read(int(headers["content-length"]))
    return json.loads(body)


def write_message(stream, lock: threading.Lock, payload: dict) -> None:
    body = json.dumps(payload).encode("utf-8")
    with lock:
        stream.write(b"Content-Length: %d\r\n\r\n" % len(body) + body)
        stream.flush()


def respond(request: dict, writer, lock: threading.Lock) -> None:
    method = request["method"]
    _log_method(method)
    try:
        result = handle(method, request.get("params") or {})
        response = {"jsonrpc": "2.0", "id": request["id"], "result": result}
    except LookupError:
        response = {
            "jsonrpc": "2.0",
            "id": request["id"],
            "error": {"code": -32601, "message": f"Unknown method {method}"},
        }
    write_message(writer, lock, response)


def serve(reader, writer) -> None:
    lock = threading.Lock()
    while True:
        request = read_message(reader)
        if request is None:
            return
        if "id" not in request:
            continue
        threading.Thread(
            target=respond, args=(request, writer, lock), daemon=True
        ).start()


def main(argv: list[str]) -> int:
    if len(argv) < 2 or argv[0] != "jsonrpc":
        print(f"unexpected arguments: {argv}", file=sys.stderr)
        return 2
    print(f"fake bicep {VERSION} starting", file=sys.stderr)

    if BEHAVIOR == "exit":
        return 3
    if BEHAVIOR == "hang":
        time.sleep(3600)
        return 0

    if argv[1] == "--stdio":
        serve(sys.stdin.buffer, sys.stdout.buffer)
        return 0

    if argv[1] == "--pipe":
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.connect(argv[2])
    elif argv[1] == "--socket":
        sock = socket.create_connection(("127.0.0.1", int(argv[2])))
    else:
        print(f"unknown transport: {argv[1]}", file=sys.stderr)
        return 2

    with sock:
        serve(sock.makefile("rb"), sock.makefile("wb"))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
