"""
Celery tasks for consultation processing.
"""

import logging
import time

from celery import shared_task

from .exceptions import ConsultationBusyError
from .models import Consultation
from .services.pipeline import ConsultationPipeline

logger = logging.getLogger(__name__)


@shared_task(bind=True, acks_late=True)
def process_consultation(self, consultation_id: str, use_original: bool = False, resume: bool = False):
    """
    Run the processing pipeline for one consultation.

    No automatic retry: a failed run is recorded on the consultation and a
    doctor decides whether to reprocess.

    Returns:
        Dict with the final status
    """
    start_time = time.time()
    pipeline = ConsultationPipeline()

    try:
        consultation = pipeline.run(consultation_id, use_original=use_original, resume=resume)
    except Consultation.DoesNotExist:
        logger.error(f"Consultation {consultation_id} not found")
        return {'status': 'not_found', 'consultation_id': consultation_id}
    except ConsultationBusyError as e:
        logger.info(str(e))
        return {'status': 'already_processing', 'consultation_id': consultation_id}
    except Exception as e:
        # Already persisted on the consultation by the pipeline.
        logger.error(f"Processing failed for consultation {consultation_id}: {e}")
        return {
            'status': Consultation.STATUS_ERROR,
            'consultation_id': consultation_id,
            'error': str(e),
            'error_code': getattr(e, 'code', ''),
            'processing_time': time.time() - start_time,
        }

    processing_time = time.time() - start_time
    logger.info(f"Consultation {consultation_id} completed in {processing_time:.2f}s")
    return {
        'status': consultation.status,
        'consultation_id': consultation_id,
        'processing_time': processing_time,
    }
