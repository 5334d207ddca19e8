"""
Vision Recognizer Module.

Reads payment screenshots with a pre-trained Document Question
Answering (DocQA) model: one question per payment field ("What is the
amount paid?", "What is the reference number?", ...), each answer
carrying the model's score.

Supported Models:
    - impira/layoutlm-document-qa (default)
    - any Hugging Face model usable with the "document-question-answering"
      pipeline

Author: ML Engineering Team
"""

import threading
from typing import Dict, Optional, Sequence, Tuple

from PIL import Image

from payproof.config import get_config
from payproof.input_handler.normalized_image import NormalizedImage, VariantKind, pick_variant
from payproof.recognition.adapter import RecognitionAdapter
from payproof.recognition.result import RecognizerKind, VisionField, VisionRecognition
from payproof.utils.exceptions import MalformedResponseError, RecognizerUnavailableError
from payproof.utils.logger import get_logger

logger = get_logger(__name__)


DEFAULT_FIELD_QUESTIONS = {
    'amount': "What is the amount paid?",
    'currency': "What is the currency of the payment?",
    'payment_method': "Which bank or e-wallet was used for this payment?",
    'sender_name': "What is the name of the sender?",
    'sender_phone': "What is the sender's mobile number?",
    'reference_number': "What is the reference number?",
    'timestamp': "What is the date and time of the transaction?",
}


class DocumentQABackend:
    """
    Hugging Face document-question-answering pipeline.

    The model is loaded lazily on the first question, under a lock, so
    building the service stays cheap and a missing model surfaces as a
    recognizer failure instead of a startup crash.

    Attributes:
        model_name: Pre-trained model identifier
        device: Inference device ('cpu' or 'cuda')

    Example:
        >>> backend = DocumentQABackend()
        >>> backend.answer_fields(image, {"amount": "What is the amount paid?"})
        {'amount': ('1,000.00', 0.93)}
    """

    DEFAULT_MODEL = "impira/layoutlm-document-qa"
    name = "document-qa"

    def __init__(self, model_name: Optional[str] = None, device: Optional[str] = None) -> None:
        self.model_name = model_name or get_config("vision.model.name", self.DEFAULT_MODEL)
        self.device = device or get_config("vision.model.device", "cpu")
        self.pipeline = None
        self._lock = threading.Lock()

    def _initialize_model(self):
        """
        Load the pipeline once.

        Raises:
            RecognizerUnavailableError: transformers is missing or the
                model cannot be loaded.
        """
        with self._lock:
            if self.pipeline is not None:
                return self.pipeline

            try:
                from transformers import pipeline
            except ImportError:
                raise RecognizerUnavailableError(
                    self.name, "transformers not installed (pip install transformers)"
                )

            logger.info(f"Loading document-qa model: {self.model_name}")
            try:
                self.pipeline = pipeline(
                    "document-question-answering",
                    model=self.model_name,
                    device=0 if self.device == "cuda" else -1
                )
            except (OSError, ValueError, RuntimeError) as e:
                raise RecognizerUnavailableError(self.name, f"could not load {self.model_name}: {e}")

            logger.info("Document-qa model loaded")
            return self.pipeline

    def answer_fields(
        self,
        image: Image.Image,
        questions: Dict[str, str]
    ) -> Dict[str, Tuple[str, float]]:
        """
        Ask one question per field.

        Args:
            image: Screenshot to read.
            questions: Mapping of field name to question.

        Returns:
            Mapping of field name to (answer, score) for every field the
            model answered.

        Raises:
            RecognizerUnavailableError: The model cannot be loaded.
            MalformedResponseError: Every question failed.
        """
        qa = self._initialize_model()
        if image.mode != 'RGB':
            image = image.convert('RGB')

        answers: Dict[str, Tuple[str, float]] = {}
        errors = []
        for field_name, question in questions.items():
            try:
                output = qa(image=image, question=question)
            except (RuntimeError, ValueError, KeyError, IndexError) as e:
                logger.warning(f"Document-qa failed on '{field_name}': {e}")
                errors.append(field_name)
                continue

            if isinstance(output, list):
                output = output[0] if output else {}
            answer = self._clean_answer(output.get('answer', ''))
            if answer:
                answers[field_name] = (answer, float(output.get('score', 0.0)))

        if errors and len(errors) == len(questions):
            raise MalformedResponseError(self.name, f"all {len(errors)} questions failed")
        return answers

    @staticmethod
    def _clean_answer(answer: Optional[str]) -> str:
        """Trim whitespace and stray punctuation the model tends to include."""
        if not answer:
            return ""
        return answer.strip().strip(':-.,;').strip()


class VisionRecognizer(RecognitionAdapter):
    """
    Vision-model recognition adapter.

    Any object with ``answer_fields(PIL.Image, Dict[str, str])`` can be
    the backend.

    Attributes:
        backend: Question-answering backend
        field_questions: Field name to question mapping
        min_answer_score: Answers scoring below this are ignored

    Example:
        >>> recognizer = VisionRecognizer()
        >>> result = await recognizer.recognize(variants)
        >>> result.get("amount").value
        '1,000.00'
    """

    kind = RecognizerKind.VISION

    def __init__(
        self,
        backend=None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        field_questions: Optional[Dict[str, str]] = None
    ) -> None:
        super().__init__(
            timeout=timeout if timeout is not None else get_config("vision.timeout_seconds", 45.0),
            max_retries=max_retries if max_retries is not None else get_config("vision.max_retries", 2),
            backoff_base=backoff_base if backoff_base is not None else get_config("vision.backoff_base_seconds", 1.0),
            backoff_max=backoff_max if backoff_max is not None else get_config("vision.backoff_max_seconds", 8.0),
        )
        self.backend = backend or DocumentQABackend()
        self.field_questions = self._load_field_questions(field_questions)
        self.min_answer_score = get_config("vision.min_answer_score", 0.05)

        logger.debug(
            f"VisionRecognizer initialized ({len(self.field_questions)} fields, "
            f"timeout={self.timeout}s)"
        )

    @staticmethod
    def _load_field_questions(overrides: Optional[Dict[str, str]]) -> Dict[str, str]:
        questions = dict(DEFAULT_FIELD_QUESTIONS)
        questions.update(get_config("vision.questions", {}) or {})
        if overrides:
            questions.update(overrides)
        return questions

    def _recognize_sync(self, images: Sequence[NormalizedImage]) -> VisionRecognition:
        variant = pick_variant(images, VariantKind.PRIMARY)
        if variant is None:
            raise MalformedResponseError(self.name, "no image variant available")

        raw_answers = self.backend.answer_fields(variant.to_pil(), self.field_questions)

        answers = []
        for field_name, (value, score) in raw_answers.items():
            if score < self.min_answer_score:
                logger.debug(f"Dropping weak vision answer {field_name}='{value}' ({score:.2f})")
                continue
            answers.append(VisionField(name=field_name, value=value, confidence=min(1.0, score)))

        confidence = sum(a.confidence for a in answers) / len(answers) if answers else 0.0
        for answer in answers:
            logger.debug(f"Vision {answer.name}: '{answer.value}' ({answer.confidence:.2f})")

        return VisionRecognition(
            recognizer=self.kind,
            confidence=confidence,
            latency=0.0,
            answers=tuple(answers)
        )
