# backend/kyb/services/orchestrator.py
"""
The KYB pipeline and the Celery task that runs it.

Initial submissions and continuations go through the same entry point,
`KybPipeline.run(job_id, start_stage, continuation)`:

    identity_resolution -> registry_verification -> website_collection
        -> cross_validation -> compilation -> done

Anything the pipeline cannot decide on its own raises `ActionRequired`,
which parks the job in `action_required` with the fields that would
unblock it. Any other exception fails the job.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..core.celery_app import RUN_KYB_JOB_TASK, celery_app
from ..core.config import get_settings
from ..models.kyb_job import JobStatus, KybJob, PipelineStage
from ..schemas.log_entries import Step
from ..schemas.verification import CandidateIdentity, CrnSource
from .ai_prompts import (
    CRN_LOOKUP_MAX_TOKENS,
    WEBSITE_LOOKUP_MAX_TOKENS,
    build_crn_lookup_prompt,
    build_website_lookup_prompt,
    parse_crn_lookup_response,
    parse_website_lookup_response,
)
from .connectors import CompaniesHouseClient, RegistryAuthError, RegistryError, RegistryRateLimitError
from .cross_validator import cross_validate, find_alternative_registration
from .identity_resolver import AI_ERRORS, IdentityResolver, LLMFn
from .job_store import JobRecorder, JobStore
from .llm import complete_prompt
from .registry_verifier import RegistryVerification, RegistryVerifier
from .report import build_not_found_result, build_verification_result
from .similarity import CONFIRM_BELOW, WRONG_COMPANY_BELOW, confidence_label, similarity
from .web_discovery import WebDiscoveryService, is_excluded_host
from .website_intel import WebsiteData, WebsiteIntelligenceCollector, normalize_url

logger = logging.getLogger(__name__)
settings = get_settings()

CRN_REQUIRED_FIELDS = {
    "crn": "Company Registration Number (8 digits, or a 2-letter prefix such as SC followed by 6 digits)",
    "website": "Company website URL (optional)",
    "company_name": "Alternative or registered company name (optional)",
}
VALID_CRN_FIELD = {"crn": "Please provide a valid CRN for an active company"}
ACTIVE_CRN_FIELD = {"crn": "Please provide a CRN for an ACTIVE company"}
CONFIRM_COMPANY_FIELDS = {
    "confirm_company": 'Type "yes" to confirm this company',
    "crn": "Or provide the correct CRN",
}


class ActionRequired(Exception):
    """Pipeline cannot continue without input from the user."""

    def __init__(
        self,
        step: str,
        message: str,
        required_fields: Dict[str, str],
        data: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.message = message
        self.required_fields = required_fields
        self.data = data


@dataclass
class Continuation:
    """User input supplied through /continueKYB."""

    crn: str | None = None
    company_name: str | None = None
    website: str | None = None
    confirmed: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "Continuation":
        data = data or {}
        return cls(
            crn=data.get("crn"),
            company_name=data.get("company_name"),
            website=data.get("website"),
            confirmed=bool(data.get("confirmed")),
        )


def can_confirm(job: KybJob, continuation: Continuation) -> bool:
    return bool(continuation.confirmed and job.candidate_crn and job.awaiting_confirmation)


def plan_continuation(job: KybJob, continuation: Continuation) -> Tuple[PipelineStage, str]:
    """
    Decide where a resumed job re-enters the pipeline.

    A CRN wins over everything else; a new company name restarts identity
    resolution; anything else goes back to registry verification, which asks
    for a CRN again when there is no candidate to verify. A confirmation only
    counts when the last pause asked for one.
    """
    if continuation.crn:
        return PipelineStage.REGISTRY_VERIFICATION, "Job continuing with provided CRN"
    if can_confirm(job, continuation):
        return PipelineStage.REGISTRY_VERIFICATION, "Job continuing with confirmed company"
    if continuation.company_name:
        return PipelineStage.IDENTITY_RESOLUTION, "Job continuing with provided company name"
    if continuation.website:
        return PipelineStage.REGISTRY_VERIFICATION, "Job continuing with provided website"
    return PipelineStage.REGISTRY_VERIFICATION, "Job continuing with provided information"


def company_website(url: str) -> Optional[str]:
    """Normalised URL, or None for registries, directories and social sites."""
    url = normalize_url(url)
    host = (urlparse(url).hostname or "").lower().removeprefix("www.")
    if not host or is_excluded_host(host):
        return None
    return url


def _profile_summary(profile: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: profile.get(key)
        for key in (
            "company_number",
            "company_name",
            "company_status",
            "type",
            "date_of_creation",
            "jurisdiction",
            "sic_codes",
            "registered_office_address",
        )
    }


class KybPipeline:
    def __init__(
        self,
        store: JobStore,
        resolver: IdentityResolver,
        verifier: RegistryVerifier,
        registry: CompaniesHouseClient,
        collector: WebsiteIntelligenceCollector,
        discovery: WebDiscoveryService,
        llm: LLMFn,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.verifier = verifier
        self.registry = registry
        self.collector = collector
        self.discovery = discovery
        self.llm = llm

    async def run(
        self,
        job_id: str,
        start_stage: PipelineStage = PipelineStage.IDENTITY_RESOLUTION,
        continuation: Continuation | None = None,
    ) -> None:
        job = self.store.require(job_id)
        if job.status == JobStatus.PENDING:
            job = self.store.start(job_id)
        elif job.status != JobStatus.PROCESSING:
            logger.warning(
                "Job %s is %s; nothing to run", job_id, job.status.value,
                extra={"job_id": job_id, "stage": start_stage.value},
            )
            return

        logger.info(
            "Running KYB pipeline from %s", start_stage.value,
            extra={"job_id": job_id, "stage": start_stage.value, "step": "start"},
        )
        try:
            await self._run_stages(job, start_stage, continuation or Continuation())
        except ActionRequired as action:
            logger.info(
                "Job %s needs input: %s", job_id, action.message,
                extra={"job_id": job_id, "step": action.step},
            )
            self.store.require_action(job_id, action.step, action.message, action.required_fields, action.data)
        except Exception as e:
            logger.exception("KYB job failed", extra={"job_id": job_id, "step": "error"})
            self.store.fail(job_id, f"{e.__class__.__name__}: {e}")
            raise

    async def _run_stages(self, job: KybJob, start_stage: PipelineStage, continuation: Continuation) -> None:
        job_id = job.id
        recorder = self.store.recorder(job_id)
        name = job.active_name

        if continuation.company_name:
            # With a CRN the name only relabels the job; without one it restarts resolution
            self.store.set_active_name(
                job_id, continuation.company_name, restart=start_stage == PipelineStage.IDENTITY_RESOLUTION
            )
            name = continuation.company_name

        website_hint, website_source = job.website_hint, job.website_source
        if continuation.website:
            website_hint, website_source = normalize_url(continuation.website), "user_provided"
            self.store.set_website_hint(job_id, website_hint, website_source)

        if start_stage == PipelineStage.IDENTITY_RESOLUTION:
            self.store.set_stage(job_id, PipelineStage.IDENTITY_RESOLUTION)
            outcome = await self.resolver.resolve(name, recorder)
            if outcome.not_found:
                result = build_not_found_result(name, "No active company found for this name")
                self.store.set_result(
                    job_id, result.model_dump(mode="json"), message="No active company found for this name"
                )
                return
            if outcome.candidate is None:
                raise ActionRequired(
                    Step.ACTION_REQUIRED,
                    f'Could not determine a Company Registration Number for "{name}"',
                    CRN_REQUIRED_FIELDS,
                )
            candidate = outcome.candidate
            if candidate.website and not website_hint:
                url = company_website(candidate.website)
                if url:
                    website_hint, website_source = url, candidate.website_source or "ai"
                    self.store.set_website_hint(job_id, website_hint, website_source)
                else:
                    recorder.message(Step.WEBSITE_SEARCH, f"Ignoring AI-suggested website {candidate.website}")
        elif continuation.crn:
            candidate = CandidateIdentity(crn=continuation.crn, crn_source=CrnSource.USER_PROVIDED)
        elif can_confirm(job, continuation):
            candidate = CandidateIdentity(
                crn=job.candidate_crn,
                crn_source=CrnSource(job.candidate_source) if job.candidate_source else None,
                confirmed=True,
            )
        elif continuation.confirmed and job.candidate_crn:
            raise ActionRequired(
                Step.ACTION_REQUIRED,
                f"CRN {job.candidate_crn} cannot be confirmed; please provide the correct CRN",
                CRN_REQUIRED_FIELDS,
            )
        else:
            raise ActionRequired(
                Step.ACTION_REQUIRED,
                "A Company Registration Number is still required to continue",
                CRN_REQUIRED_FIELDS,
            )

        self.store.set_candidate(job_id, candidate.crn, candidate.crn_source.value if candidate.crn_source else None)

        self.store.set_stage(job_id, PipelineStage.REGISTRY_VERIFICATION)
        verification = await self._verify(candidate, name, recorder)
        profile = verification.profile
        score = similarity(verification.company_name, name)
        candidate = candidate.model_copy(
            update={
                "company_name": verification.company_name,
                "similarity": round(score, 3),
                "confidence": confidence_label(score),
            }
        )
        recorder.data(Step.REGISTRY_PROFILE, _profile_summary(profile))

        self.store.set_stage(job_id, PipelineStage.WEBSITE_COLLECTION)
        registry_name = verification.company_name or name
        website_url, website_source, discovery = await self._find_website(
            registry_name, verification.crn, website_hint, website_source, recorder
        )
        website: WebsiteData | None = None
        if website_url:
            website = await self.collector.collect(website_url, registry_name)
            recorder.data(Step.WEBSITE_SCRAPE, website.as_dict())

        self.store.set_stage(job_id, PipelineStage.CROSS_VALIDATION)
        cross = cross_validate(profile, website, name)
        if website is not None and website.company_name:
            recorder.data(
                Step.NAME_COMPARISON,
                {
                    "website_name": website.company_name,
                    "registry_name": verification.company_name,
                    "similarity": cross.name_similarity,
                    "match": cross.name_match,
                },
            )
        if website is not None and website.crn:
            recorder.data(
                Step.CRN_CROSS_VALIDATION,
                {
                    "website_crn": website.crn,
                    "registry_crn": verification.crn,
                    "match": cross.crn_match,
                    "location": website.crn_location,
                    "context": website.crn_context,
                },
            )

        alternative: Optional[Dict[str, Any]] = None
        discrepancy: Optional[Dict[str, Any]] = None
        if cross.name_match is False and website is not None and website.company_name:
            alternative = await find_alternative_registration(self.registry, website.company_name, verification.crn)
            if alternative:
                cross.add_issue(
                    "possible different company",
                    f'Website name "{website.company_name}" matches another registered company: '
                    f'"{alternative["title"]}" ({alternative["crn"]})',
                )
                recorder.data(Step.CRN_VERIFICATION_ALERT, alternative)

            discrepancy = await self._ai_crn_check(website.company_name, verification, recorder)
            # Skip when the registry alert already named the same CRN
            if discrepancy and not (alternative and str(alternative["crn"]).upper() == discrepancy["ai_suggested_crn"]):
                cross.add_issue("possible CRN discrepancy", discrepancy["message"])

        self.store.set_stage(job_id, PipelineStage.COMPILATION)
        officers, pscs, document_url = await self._registry_extras(verification.crn, recorder)
        result = build_verification_result(
            business_name=name,
            candidate=candidate,
            profile=profile,
            website=website,
            website_source=website_source,
            cross=cross,
            officers=officers,
            pscs=pscs,
            incorporation_document_url=document_url,
            discovery=discovery,
            alternative_registration=alternative,
            crn_discrepancy=discrepancy,
        )
        self.store.set_result(job_id, result.model_dump(mode="json"))
        logger.info(
            "KYB job completed: %s", result.verification_status,
            extra={"job_id": job_id, "crn": verification.crn, "step": "completed"},
        )

    async def _verify(self, candidate: CandidateIdentity, name: str, recorder: JobRecorder) -> RegistryVerification:
        crn = candidate.crn or ""
        try:
            verification = await self.verifier.verify(crn)
        except RegistryAuthError as e:
            raise ActionRequired(
                Step.CRN_VERIFICATION_ERROR,
                f"Companies House rejected our credentials while verifying CRN {crn}: {e}",
                VALID_CRN_FIELD,
            )
        except RegistryRateLimitError as e:
            raise ActionRequired(
                Step.CRN_VERIFICATION_ERROR,
                f"Companies House rate limit reached while verifying CRN {crn}; resubmit to retry ({e})",
                VALID_CRN_FIELD,
            )
        except RegistryError as e:
            raise ActionRequired(
                Step.CRN_VERIFICATION_ERROR,
                f"Error verifying CRN {crn}: {e}",
                VALID_CRN_FIELD,
            )

        if verification.reason == "invalid_format":
            raise ActionRequired(
                Step.ACTION_REQUIRED,
                f'"{crn}" is not a valid Company Registration Number',
                CRN_REQUIRED_FIELDS,
                data=verification.as_dict(),
            )
        if verification.reason == "not_found":
            raise ActionRequired(
                Step.CRN_VERIFICATION_ERROR,
                f"No company found in Companies House with CRN {crn}",
                VALID_CRN_FIELD,
                data=verification.as_dict(),
            )
        if verification.reason == "inactive":
            raise ActionRequired(
                Step.COMPANY_STATUS_ERROR,
                f'Company "{verification.company_name}" ({crn}) is not active '
                f"(status: {verification.status})",
                ACTIVE_CRN_FIELD,
                data=verification.as_dict(),
            )

        score = similarity(verification.company_name, name)
        recorder.data(Step.CRN_VERIFICATION, {**verification.as_dict(), "similarity": round(score, 3)})

        if candidate.crn_source == CrnSource.USER_PROVIDED or candidate.confirmed:
            return verification

        registry_name = verification.company_name
        if score < WRONG_COMPANY_BELOW:
            raise ActionRequired(
                Step.WRONG_COMPANY,
                f'CRN {crn} belongs to "{registry_name}", which does not match "{name}"',
                {"crn": f'Please provide the correct CRN for "{name}" (not the one for "{registry_name}")'},
                data={**verification.as_dict(), "similarity": round(score, 3)},
            )
        if score < CONFIRM_BELOW:
            raise ActionRequired(
                Step.CONFIRMATION_REQUIRED,
                f'Found "{registry_name}" ({crn}). Please confirm this is the company you meant',
                CONFIRM_COMPANY_FIELDS,
                data={**verification.as_dict(), "similarity": round(score, 3)},
            )
        return verification

    async def _ai_crn_check(
        self, website_name: str, verification: RegistryVerification, recorder: JobRecorder
    ) -> Optional[Dict[str, Any]]:
        """
        Ask the AI which CRN the website's company name belongs to.

        A different CRN is only reported; the accepted CRN is never switched.
        """
        try:
            text = await self.llm(build_crn_lookup_prompt(website_name), CRN_LOOKUP_MAX_TOKENS)
        except AI_ERRORS as e:
            recorder.error(Step.AI_ERROR, f"AI verification of website name failed: {e}")
            return None

        answer = parse_crn_lookup_response(text)
        recorder.data(
            Step.AI_VERIFICATION,
            {
                "website_company": website_name,
                "crn": answer.crn,
                "company_name": answer.company_name,
                "parsed_with": answer.parsed_with,
            },
        )
        if not answer.crn or answer.crn == verification.crn.upper():
            return None

        discrepancy = {
            "message": (
                f'Website company name "{website_name}" may have CRN {answer.crn}, which is different from '
                f'the Companies House CRN ({verification.crn}) for "{verification.company_name}"'
            ),
            "website_company": website_name,
            "ai_suggested_crn": answer.crn,
            "current_crn": verification.crn,
            "current_company": verification.company_name,
        }
        recorder.data(Step.CRN_DISCREPANCY, discrepancy)
        return discrepancy

    async def _find_website(
        self,
        registry_name: str,
        crn: str,
        website_hint: str | None,
        website_source: str | None,
        recorder: JobRecorder,
    ) -> Tuple[Optional[str], Optional[str], Optional[Dict[str, Any]]]:
        if website_hint:
            recorder.message(Step.WEBSITE_SEARCH, f"Using {website_source or 'known'} website {website_hint}")
            return website_hint, website_source, None

        try:
            text = await self.llm(build_website_lookup_prompt(registry_name, crn), WEBSITE_LOOKUP_MAX_TOKENS)
        except AI_ERRORS as e:
            recorder.error(Step.AI_ERROR, f"AI website lookup failed: {e}")
        else:
            answer = parse_website_lookup_response(text)
            recorder.data(Step.WEBSITE_SEARCH, answer)
            website = answer.get("website")
            if website:
                url = company_website(website)
                if url:
                    return url, "ai", None
                recorder.message(Step.WEBSITE_SEARCH, f"Ignoring AI-suggested website {website}")

        discovery = await self.discovery.discover(registry_name)
        recorder.data(Step.WEBSITE_DISCOVERY, discovery.as_dict())
        return discovery.website, discovery.source, discovery.as_dict()

    async def _registry_extras(
        self, crn: str, recorder: JobRecorder
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], Optional[str]]:
        """Officers, PSCs and the incorporation document; each one is optional."""
        officers: List[Dict[str, Any]] = []
        pscs: List[Dict[str, Any]] = []
        document_url: Optional[str] = None
        try:
            officers = await self.registry.get_officers(crn)
        except RegistryError as e:
            recorder.error(Step.REGISTRY_PROFILE, f"Could not fetch officers for {crn}: {e}")
        try:
            pscs = await self.registry.get_persons_with_significant_control(crn)
        except RegistryError as e:
            recorder.error(Step.REGISTRY_PROFILE, f"Could not fetch persons with significant control for {crn}: {e}")
        try:
            document_url = await self.registry.get_incorporation_document_url(crn)
        except RegistryError as e:
            recorder.error(Step.REGISTRY_PROFILE, f"Could not fetch incorporation document for {crn}: {e}")
        return officers, pscs, document_url


def build_pipeline(store: JobStore | None = None) -> KybPipeline:
    registry = CompaniesHouseClient()
    return KybPipeline(
        store=store or JobStore(),
        resolver=IdentityResolver.default(complete_prompt, registry),
        verifier=RegistryVerifier(registry),
        registry=registry,
        collector=WebsiteIntelligenceCollector(),
        discovery=WebDiscoveryService(),
        llm=complete_prompt,
    )


@celery_app.task(name=RUN_KYB_JOB_TASK, bind=True, queue=settings.KYB_QUEUE)
def run_kyb_job(
    self,
    job_id: str,
    start_stage: str = PipelineStage.IDENTITY_RESOLUTION.value,
    continuation: Dict[str, Any] | None = None,
):
    pipeline = build_pipeline()
    asyncio.run(pipeline.run(job_id, PipelineStage(start_stage), Continuation.from_dict(continuation)))


def enqueue_kyb_job(
    job_id: str,
    start_stage: PipelineStage = PipelineStage.IDENTITY_RESOLUTION,
    continuation: Continuation | None = None,
) -> None:
    celery_app.send_task(
        RUN_KYB_JOB_TASK,
        args=[job_id, start_stage.value, continuation.as_dict() if continuation else None],
        queue=settings.KYB_QUEUE,
    )
