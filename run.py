#!/usr/bin/env python3
"""Service runner: single-shot backup or scheduled backup service"""
import os
import sys
from pgbackup import create_app
from pgbackup.commands import run_single_shot

if __name__ == '__main__':
    app = create_app()

    if app.config['SINGLE_SHOT_MODE']:
        sys.exit(run_single_shot(app))

    # Scheduler runs in the background; serve /health and /api/status
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, use_reloader=False)
