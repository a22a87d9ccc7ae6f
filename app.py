import os
import logging
import secrets
from flask import Flask, request, jsonify
from pydantic import ValidationError
from orchestrator.config import (
    API_KEY_HEADER,
    LOG_DIR,
    RUNNER_TOKEN,
    SANDBOX_TOKEN,
)
from orchestrator.constant import Verdict
from orchestrator.exception import (
    CapacityExceededError,
    DuplicatedSubmissionIdError,
    LanguageNotSupportedError,
    SubmissionIdNotFoundError,
)
from orchestrator.meta import RunnerCallback, Submission
from orchestrator.orchestrator import Orchestrator
from orchestrator.result_factory import make_failure_result

LOG_DIR.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    filename=str(LOG_DIR / "orchestrator.log"),
    level=logging.DEBUG,
)
app = Flask(__name__)
if __name__ != "__main__":
    # let flask app use gunicorn's logger
    gunicorn_logger = logging.getLogger("gunicorn.error")
    app.logger.handlers = gunicorn_logger.handlers
    app.logger.setLevel(gunicorn_logger.level)
    logging.getLogger().setLevel(gunicorn_logger.level)

    # Allow overriding log level via environment variable
    if os.getenv("ORCHESTRATOR_DEBUG", "").lower() == "true":
        app.logger.setLevel(logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)
logger = app.logger

# setup orchestrator
ORCHESTRATOR_CONFIG = os.getenv(
    "ORCHESTRATOR_CONFIG",
    ".config/orchestrator.json.example",
)
ORCHESTRATOR = Orchestrator(ORCHESTRATOR_CONFIG)


def _valid_key(expected: str) -> bool:
    provided = request.headers.get(API_KEY_HEADER, "")
    return secrets.compare_digest(provided, expected)


def _err(msg: str, code: int, data=None):
    return jsonify({
        "status": "err",
        "msg": msg,
        "data": data,
    }), code


@app.post("/submit/<submission_id>")
def submit(submission_id: str):
    if not _valid_key(SANDBOX_TOKEN):
        logger.debug(f"get invalid key for submission {submission_id}")
        return "invalid token", 403

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _err("request body must be a json object", 400)
    try:
        submission = Submission.model_validate({
            **body,
            "submissionId": submission_id,
        })
    except ValidationError as e:
        return _err(
            "invalid submission",
            400,
            e.errors(include_url=False, include_context=False),
        )

    try:
        ORCHESTRATOR.handle(submission)
    except LanguageNotSupportedError as e:
        logger.warning(f"language not supported: {submission.language}")
        result = make_failure_result(
            submission,
            str(e),
            status=Verdict.LANGUAGE_NOT_SUPPORTED.value,
        )
        return _err(str(e), 400, result.model_dump())
    except DuplicatedSubmissionIdError as e:
        return _err(str(e), 409)
    except CapacityExceededError as e:
        return _err(str(e), 503)
    logger.debug(f"send submission {submission_id} to orchestrator")
    return jsonify({
        "status": "ok",
        "msg": "ok",
        "data": "ok",
    }), 202


@app.post("/callback/<submission_id>")
def callback(submission_id: str):
    if not _valid_key(RUNNER_TOKEN):
        logger.debug(f"get invalid runner key for submission {submission_id}")
        return "invalid token", 403
    try:
        payload = RunnerCallback.model_validate(request.get_json(silent=True))
    except ValidationError as e:
        return _err(
            "invalid callback",
            400,
            e.errors(include_url=False, include_context=False),
        )
    try:
        ORCHESTRATOR.on_callback(submission_id, payload)
    except SubmissionIdNotFoundError as e:
        return _err(str(e), 404)
    return jsonify({
        "status": "ok",
        "msg": "ok",
        "data": "ok",
    })


@app.get("/status")
def status():
    info = ORCHESTRATOR.status()
    ret = {
        "load": info["inFlightCount"] / ORCHESTRATOR.MAX_JOB_COUNT,
    }
    # if key is provided
    if _valid_key(SANDBOX_TOKEN):
        ret.update(info)
    return jsonify(ret), 200


# for local debug
# if __name__ == "__main__":
#     app.run(host="0.0.0.0", port=8080, debug=True)
