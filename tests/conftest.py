# tests/conftest.py
import os

# keep test runs from writing log files or reading a developer's key
os.environ["LOG_FILE"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
