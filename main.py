import logging
import os
import subprocess
import sys

import pos_config
from pos_server import create_app


def start_receipt_agent():
    if not pos_config.RECEIPT_AGENT_AUTO_START:
        return None
    if os.environ.get('WERKZEUG_RUN_MAIN') == 'true':
        return None
    script_path = os.path.join(os.path.dirname(__file__), 'receipt_agent.py')
    if not os.path.exists(script_path):
        return None
    env = os.environ.copy()
    env.setdefault('RECEIPT_AGENT_HOST', '127.0.0.1')
    env.setdefault('RECEIPT_AGENT_PORT', '5001')
    return subprocess.Popen([sys.executable, script_path], env=env)


if __name__ == '__main__':
    logging.basicConfig(
        level=pos_config.POS_LOG_LEVEL,
        format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    )
    app = create_app()
    agent_proc = start_receipt_agent()
    try:
        app.run(host=pos_config.HOST, port=pos_config.PORT, debug=pos_config.FLASK_DEBUG)
    finally:
        if agent_proc:
            agent_proc.terminate()
