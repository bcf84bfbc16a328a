"""
AWS Lambda entry point for the ESS Dispatcher

An EventBridge rule invokes this every few minutes. Each invocation makes one
dispatch decision, applies it (unless dry_run) and returns.

Event (all optional):
- config_path: YAML config to load (default: 'config.yaml')
- dry_run: decide and log without commanding the battery (default: false)

Credentials come from the APP_ID, APP_SECRET and SERIAL_NUMBER environment variables.
"""

import asyncio
import json
import logging
import os
from datetime import datetime

logger = logging.getLogger(__name__)

CREDENTIAL_VARS = ('APP_ID', 'APP_SECRET', 'SERIAL_NUMBER')
QUIET_LOGGERS = ('aiohttp', 'asyncio')
CLOUDWATCH_FORMAT = '%(levelname)s %(name)s %(message)s'


def setup_cloudwatch_logging(level: int = logging.INFO) -> None:
    """Log plain lines to stdout; CloudWatch adds its own timestamps"""
    root = logging.getLogger()
    root.setLevel(level)
    # the Lambda runtime installs its own handler, replace it with ours once per container
    if any(getattr(h, '_ess_dispatcher', False) for h in root.handlers):
        return
    for h in list(root.handlers):
        root.removeHandler(h)
    stream = logging.StreamHandler()
    stream.setFormatter(logging.Formatter(CLOUDWATCH_FORMAT))
    stream._ess_dispatcher = True
    root.addHandler(stream)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def respond(status_code: int, body: dict) -> dict:
    return {'statusCode': status_code, 'body': json.dumps(body)}


async def run_update(config_path: str, dry_run: bool) -> dict:
    """One dispatch cycle; the dispatcher is built inside the running loop for aiohttp"""
    from ess_dispatcher.dispatcher import Dispatcher

    dispatcher = Dispatcher(config_path)
    try:
        action = await dispatcher.update(dry_run=dry_run)
    finally:
        await dispatcher.ess_client.close()

    result = {'timestamp': datetime.now().isoformat()}
    if action is None:
        result.update(success=True, message='No action taken')
    else:
        result.update(success=not action.failed, action=action.to_dict())
    return result


def lambda_handler(event, context):
    setup_cloudwatch_logging()
    event = event or {}
    logger.info(f"Invoked with event: {json.dumps(event)}")

    missing = [var for var in CREDENTIAL_VARS if not os.environ.get(var)]
    if missing:
        error = f"Missing required environment variables: {missing}"
        logger.error(error)
        return respond(400, {'success': False, 'error': error})

    config_path = event.get('config_path', 'config.yaml')
    dry_run = bool(event.get('dry_run', False))

    try:
        result = asyncio.run(run_update(config_path, dry_run))
    except Exception as e:
        logger.exception(f"Dispatch failed: {e}")
        return respond(500, {'success': False, 'error': str(e), 'error_type': type(e).__name__})

    response = respond(200 if result['success'] else 500, result)
    logger.info(f"Completed: {response}")
    return response


if __name__ == "__main__":
    print(json.dumps(lambda_handler({'dry_run': True}, None), indent=2))
