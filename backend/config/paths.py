"""
Centralized path configuration for the label resolver
The registry credentials secret is mounted into CONFIG_DIR
"""

import os

# The dockerconfigjson secret is mounted here in the cluster
CONFIG_DIR = os.getenv('LABELER_CONFIG_DIR', '/app/config')

# For development/testing outside the container
if 'LABELER_CONFIG_DIR' not in os.environ and not os.path.exists('/app'):
    # Running locally, read from the working directory
    CONFIG_DIR = '.'

# Credentials document - read once at startup
CREDENTIALS_FILE = os.path.join(CONFIG_DIR, '.dockerconfigjson')
