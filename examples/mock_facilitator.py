"""
Stand-in x402 facilitator for local runs.

Answers every verify with isValid=true and every settle with a fake
transaction hash, so the gateway can be exercised without a chain.

    python examples/mock_facilitator.py
    PAYBOUND_UPSTREAM=http://127.0.0.1:8402 paybound serve --policy-file examples/policies.yaml
"""

import secrets

import uvicorn
from fastapi import FastAPI, Request

app = FastAPI()


@app.get("/")
async def root():
    return {"status": "ok"}


@app.post("/verify")
async def verify(request: Request):
    body = await request.json()
    return {"isValid": True, "payer": body.get("payer", "0x0000000000000000000000000000000000000000")}


@app.post("/settle")
async def settle(request: Request):
    await request.json()
    return {"success": True, "transaction": "0x" + secrets.token_hex(32), "network": "base-sepolia"}


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8402)
