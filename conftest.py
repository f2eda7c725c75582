"""
Pytest configuration file for the RTSP Control Server project.
This file ensures that the rtsp_server package can be imported during tests.
"""

import sys
from pathlib import Path

# Add the project root directory to the Python path
project_root = Path(__file__).parent.absolute()
sys.path.insert(0, str(project_root))
