"""
corsrelay - CORS Forwarding Relay
Main entry point for the application.
"""

from dotenv import load_dotenv

from corsrelay.proxy.server import main

# Load environment variables
load_dotenv(".env.local")


if __name__ == "__main__":
    main()
