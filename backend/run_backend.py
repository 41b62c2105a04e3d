#!/usr/bin/env python3
"""
Startup script for the TenderMatch FastAPI backend
"""
import os
import subprocess
import sys

def main():
    """Launch the FastAPI backend server"""
    try:
        # Run from the backend directory so flat module imports resolve
        script_dir = os.path.dirname(os.path.abspath(__file__))
        os.chdir(script_dir)

        port = os.getenv("PORT", "8000")
        cmd = [
            sys.executable, "-m", "uvicorn",
            "api:app",
            "--host", "0.0.0.0",
            "--port", port,
            "--log-level", os.getenv("LOG_LEVEL", "info").lower()
        ]
        if os.getenv("RELOAD", "").lower() in ("1", "true", "yes"):
            cmd.append("--reload")

        print("Starting TenderMatch FastAPI Backend...")
        print(f"API will be available at: http://localhost:{port}")
        print(f"API Documentation: http://localhost:{port}/docs")
        print("Press Ctrl+C to stop the server")
        print("-" * 60)

        subprocess.run(cmd, check=False)

    except KeyboardInterrupt:
        print("\nShutting down the backend server...")
    except Exception as e:
        print(f"Error starting backend server: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
