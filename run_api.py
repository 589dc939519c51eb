#!/usr/bin/env python3
"""
Script to run the compliance attestation API.
"""

import os

import uvicorn
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Run the FastAPI application
if __name__ == "__main__":
    host = os.getenv("COMPLIANCE_API_HOST", "0.0.0.0")
    port = int(os.getenv("COMPLIANCE_API_PORT", "8000"))
    print(f"Starting compliance API on {host}:{port}")
    uvicorn.run("compliance.api:app", host=host, port=port, reload=True)
