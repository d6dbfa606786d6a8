#!/usr/bin/env python3
"""
Demo script streaming node state changes of a workflow run over WebSocket
"""

import asyncio
import websockets
import json
import requests

BASE_URL = "http://localhost:8000/api/v1"

DEMO_WORKFLOW = {
    "name": "websocket_demo_workflow",
    "nodes": [
        {"id": "start", "type": "webhook", "config": {"payload": {"temperature": 31}}},
        {"id": "wait", "type": "delay", "config": {"duration": "1", "unit": "seconds"}},
        {"id": "check", "type": "ifElse", "config": {"condition": "input.input.config.payload.temperature > 30"}},
        {"id": "alert", "type": "sendEmail", "config": {
            "to": "ops@example.com",
            "subject": "Heat alert: {{input.condition}}",
            "body": "Reading: {{input.input.input.config.payload.temperature}}",
        }},
    ],
    "edges": [
        {"source": "start", "target": "wait"},
        {"source": "wait", "target": "check"},
        {"source": "check", "target": "alert"},
    ],
}


async def websocket_client(workflow_id, done):
    """Connect to WebSocket and print node state changes until the run completes"""
    uri = f"ws://localhost:8000/api/v1/ws/workflows/{workflow_id}"

    print(f"Connecting to WebSocket: {uri}")

    async with websockets.connect(uri) as websocket:
        print("WebSocket connected")
        done.set_result(True)

        while True:
            try:
                message = await websocket.recv()
            except websockets.exceptions.ConnectionClosed:
                print("WebSocket connection closed")
                break

            data = json.loads(message)

            if data["type"] == "connected":
                print(data["message"])

            elif data["type"] == "node_state":
                state = data["state"]
                line = f"[{state['status']:>9}] {data['node_id']}"
                if state.get("error"):
                    line += f"  error: {state['error']}"
                elif state["status"] == "completed":
                    line += f"  output: {json.dumps(state['output'])[:80]}"
                print(line)

            elif data["type"] == "run_status":
                print(f"Run {data['run_id']}: {data['status']}")
                if data["status"] in ("completed", "refused"):
                    break


def create_workflow():
    """Create the demo workflow via REST API"""
    response = requests.post(f"{BASE_URL}/workflows", json=DEMO_WORKFLOW, timeout=5)
    response.raise_for_status()
    workflow_id = response.json()["workflow_id"]
    print(f"Created workflow: {workflow_id}")
    return workflow_id


def run_workflow(workflow_id):
    response = requests.post(f"{BASE_URL}/workflows/{workflow_id}/run", json={}, timeout=30)
    response.raise_for_status()
    return response.json()


async def demo_websocket_streaming():
    try:
        requests.get("http://localhost:8000/health", timeout=2)
    except requests.exceptions.ConnectionError:
        print("Server not running. Please start with: python -m nodeflow.main")
        return

    workflow_id = create_workflow()

    connected = asyncio.get_running_loop().create_future()
    listener = asyncio.create_task(websocket_client(workflow_id, connected))
    await connected

    result = await asyncio.to_thread(run_workflow, workflow_id)
    await listener

    print()
    print(f"Final status: {result['status']}")
    for node_id, state in result["node_states"].items():
        print(f"  {node_id}: {state['status']}")


def main():
    asyncio.run(demo_websocket_streaming())


if __name__ == "__main__":
    main()
