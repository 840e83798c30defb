import json
from typing import Any, Dict, List, Tuple, Union

from pydantic import BaseModel, ValidationError
import requests
import structlog

from crib_hunter.codec import Encoding, decode
from crib_hunter.errors import InvalidEncoding, SampleLoadError
from crib_hunter.models.sample import KEY_FIELD, Sample

log = structlog.get_logger()

DEFAULT_FETCH_TIMEOUT = 30


class SampleModel(BaseModel):
    label: str = ""
    ciphertext: str
    ciphertext_format: Encoding = "b64"
    plaintext: str
    plaintext_format: Encoding = "raw"
    context: Dict[str, Union[int, str]] = {}


class SampleFile(BaseModel):
    context_fields: List[str] = []
    samples: List[SampleModel]


def context_fields_of(document: SampleFile) -> List[str]:
    """Declared fields, or every context key seen when none are declared."""
    if document.context_fields:
        return list(document.context_fields)
    names = {}
    for sample in document.samples:
        names.update((name, None) for name in sample.context if name != KEY_FIELD)
    return list(names)


def load_samples(data: Any) -> Tuple[List[Sample], List[str]]:
    """Validate a sample document. Samples with malformed encodings are skipped with a warning."""
    try:
        document = SampleFile.model_validate(data)
    except ValidationError as e:
        raise SampleLoadError(f"Invalid sample document: {e}") from e

    samples = []
    for index, model in enumerate(document.samples):
        label = model.label or f"sample-{index}"
        try:
            ciphertext = decode(model.ciphertext_format, model.ciphertext)
            plaintext = decode(model.plaintext_format, model.plaintext)
        except (InvalidEncoding, UnicodeEncodeError) as e:
            log.warning("sample skipped", label=label, error=str(e))
            continue
        samples.append(Sample(ciphertext, plaintext, model.context, label))

    return samples, context_fields_of(document)


def load_sample_file(file_path: str) -> Tuple[List[Sample], List[str]]:
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SampleLoadError(f"Could not read {file_path}: {e}") from e
    return load_samples(data)


def fetch_samples(endpoint: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> Tuple[List[Sample], List[str]]:
    """Fetch a sample document from an HTTP endpoint."""
    try:
        response = requests.get(endpoint, timeout=timeout)
    except requests.RequestException as e:
        raise SampleLoadError(f"Failed to get {endpoint}: {e}") from e
    if response.status_code != 200:
        raise SampleLoadError(f"Failed to get {endpoint}: {response.status_code} {response.text}")
    try:
        data = response.json()
    except ValueError as e:
        raise SampleLoadError(f"{endpoint} did not return JSON: {e}") from e
    return load_samples(data)
