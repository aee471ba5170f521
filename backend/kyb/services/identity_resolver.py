# backend/kyb/services/identity_resolver.py
"""
Business name -> candidate CRN.

Resolution is an ordered list of strategies. The resolver runs them in
priority order and stops at the first one that returns an outcome:

1. AiRegistryLookup      – ask the AI for the registered company (JSON answer)
2. RegistryNameSearch    – Companies House name search, active + similar only
3. ConstrainedAiLookup   – stricter AI prompt that may answer "no active CRN"

A strategy returns None to mean "no opinion, try the next one". Every
candidate CRN is sanity-checked against the registry before it is
accepted, so an AI hallucination for a different company is discarded
here rather than paused on later.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import httpx
from openai import OpenAIError

from ..schemas.log_entries import Step
from ..schemas.verification import CandidateIdentity, CrnSource
from .ai_prompts import (
    CONSTRAINED_LOOKUP_MAX_TOKENS,
    CRN_LOOKUP_MAX_TOKENS,
    build_constrained_lookup_prompt,
    build_crn_lookup_prompt,
    parse_constrained_lookup_response,
    parse_crn_lookup_response,
)
from .connectors.companies_house import CompaniesHouseClient, CompanyNotFoundError, RegistryError
from .job_store import LogRecorder
from .llm import LLMNotConfiguredError
from .registry_verifier import validate_crn_format
from .similarity import REGISTRY_SEARCH_MIN, SANITY_REJECT_BELOW, confidence_label, similarity

logger = logging.getLogger(__name__)

LLMFn = Callable[[str, int], Awaitable[str]]

AI_ERRORS = (OpenAIError, LLMNotConfiguredError, asyncio.TimeoutError, httpx.HTTPError)


@dataclass
class ResolutionContext:
    business_name: str
    recorder: LogRecorder


@dataclass
class ResolutionOutcome:
    candidate: Optional[CandidateIdentity] = None
    # A conclusive "no such active company" answer; completes the job
    not_found: bool = False
    strategy: str | None = None


async def sanity_check(
    registry: CompaniesHouseClient,
    candidate: CandidateIdentity,
    ctx: ResolutionContext,
) -> Optional[CandidateIdentity]:
    """
    Compare the registry's name for the candidate CRN with the requested name.

    Returns the enriched candidate, or None when the CRN is malformed or
    clearly belongs to another company.
    A lookup that fails for operational reasons keeps the candidate; full
    verification happens later and reports the problem properly.
    """
    crn = candidate.crn
    if not validate_crn_format(crn):
        ctx.recorder.message(Step.CRN_VERIFICATION_FAILED, f'Discarded "{crn}": not a valid CRN format')
        return None
    try:
        profile = await registry.get_company_profile(crn)
    except CompanyNotFoundError:
        ctx.recorder.message(Step.CRN_VERIFICATION_FAILED, f"CRN {crn} does not exist in Companies House")
        return None
    except RegistryError as e:
        ctx.recorder.error(Step.CRN_VERIFICATION, f"Could not verify CRN {crn} yet: {e}")
        return candidate

    registry_name = profile.get("company_name")
    score = similarity(registry_name, ctx.business_name)
    ctx.recorder.data(
        Step.CRN_VERIFICATION,
        {
            "crn": crn,
            "company_name": registry_name,
            "company_status": profile.get("company_status"),
            "similarity": round(score, 3),
        },
    )
    if score < SANITY_REJECT_BELOW:
        ctx.recorder.message(
            Step.CRN_VERIFICATION_FAILED,
            f'Rejected CRN {crn}: registered name "{registry_name}" does not match "{ctx.business_name}" '
            f"(similarity {score:.2f})",
        )
        return None

    return candidate.model_copy(
        update={
            "company_name": registry_name,
            "similarity": round(score, 3),
            "confidence": confidence_label(score),
        }
    )


class ResolutionStrategy(ABC):
    name: str

    @abstractmethod
    async def try_resolve(self, ctx: ResolutionContext) -> Optional[ResolutionOutcome]:
        ...


class AiRegistryLookup(ResolutionStrategy):
    name = "ai_lookup"

    def __init__(self, llm: LLMFn, registry: CompaniesHouseClient) -> None:
        self.llm = llm
        self.registry = registry

    async def try_resolve(self, ctx: ResolutionContext) -> Optional[ResolutionOutcome]:
        try:
            text = await self.llm(build_crn_lookup_prompt(ctx.business_name), CRN_LOOKUP_MAX_TOKENS)
        except AI_ERRORS as e:
            ctx.recorder.error(Step.AI_ERROR, f"AI lookup failed: {e}")
            return None

        answer = parse_crn_lookup_response(text)
        ctx.recorder.data(
            Step.CRN_SEARCH_RESULT,
            {
                "response": text,
                "crn": answer.crn,
                "company_name": answer.company_name,
                "company_status": answer.company_status,
                "website": answer.website,
                "reason": answer.reason,
                "parsed_with": answer.parsed_with,
            },
        )
        if not answer.crn:
            return None

        candidate = CandidateIdentity(
            crn=answer.crn,
            crn_source=CrnSource.AI,
            company_name=answer.company_name,
            website=answer.website,
            website_source="ai" if answer.website else None,
        )
        checked = await sanity_check(self.registry, candidate, ctx)
        return ResolutionOutcome(candidate=checked, strategy=self.name) if checked else None


class RegistryNameSearch(ResolutionStrategy):
    name = "registry_search"

    def __init__(self, registry: CompaniesHouseClient) -> None:
        self.registry = registry

    async def try_resolve(self, ctx: ResolutionContext) -> Optional[ResolutionOutcome]:
        ctx.recorder.message(Step.CRN_FALLBACK, "Attempting Companies House search by name")
        try:
            items = await self.registry.search_companies(ctx.business_name)
        except RegistryError as e:
            ctx.recorder.error(Step.REGISTRY_SEARCH_FAILED, str(e))
            return None

        matches = []
        for item in items:
            if item.get("company_status") != "active" or not item.get("company_number"):
                continue
            score = similarity(item.get("title"), ctx.business_name)
            if score > REGISTRY_SEARCH_MIN:
                matches.append((score, item))
        matches.sort(key=lambda m: m[0], reverse=True)

        ctx.recorder.data(
            Step.REGISTRY_SEARCH_RESULT,
            {
                "total_results": len(items),
                "active_matches": [
                    {"crn": item["company_number"], "title": item.get("title"), "similarity": round(score, 3)}
                    for score, item in matches[:5]
                ],
            },
        )
        if not matches:
            return None

        best = matches[0][1]
        candidate = CandidateIdentity(
            crn=best["company_number"],
            crn_source=CrnSource.REGISTRY_SEARCH,
            company_name=best.get("title"),
        )
        checked = await sanity_check(self.registry, candidate, ctx)
        return ResolutionOutcome(candidate=checked, strategy=self.name) if checked else None


class ConstrainedAiLookup(ResolutionStrategy):
    name = "constrained_ai_lookup"

    def __init__(self, llm: LLMFn, registry: CompaniesHouseClient) -> None:
        self.llm = llm
        self.registry = registry

    async def try_resolve(self, ctx: ResolutionContext) -> Optional[ResolutionOutcome]:
        ctx.recorder.message(Step.CRN_SECOND_ATTEMPT, "Trying with more specific AI prompt")
        try:
            text = await self.llm(
                build_constrained_lookup_prompt(ctx.business_name), CONSTRAINED_LOOKUP_MAX_TOKENS
            )
        except AI_ERRORS as e:
            ctx.recorder.error(Step.AI_ERROR, f"Second AI lookup failed: {e}")
            return None

        answer = parse_constrained_lookup_response(text)
        ctx.recorder.data(
            Step.CRN_SECOND_ATTEMPT,
            {
                "response": text,
                "crn": answer.crn,
                "company_name": answer.company_name,
                "explicit_not_found": answer.explicit_not_found,
            },
        )

        if answer.crn:
            candidate = CandidateIdentity(
                crn=answer.crn,
                crn_source=CrnSource.AI,
                company_name=answer.company_name,
            )
            checked = await sanity_check(self.registry, candidate, ctx)
            return ResolutionOutcome(candidate=checked, strategy=self.name) if checked else None

        if answer.explicit_not_found:
            return ResolutionOutcome(not_found=True, strategy=self.name)
        return None


class IdentityResolver:
    def __init__(self, strategies: List[ResolutionStrategy]) -> None:
        self.strategies = strategies

    @classmethod
    def default(cls, llm: LLMFn, registry: CompaniesHouseClient) -> "IdentityResolver":
        return cls(
            [
                AiRegistryLookup(llm, registry),
                RegistryNameSearch(registry),
                ConstrainedAiLookup(llm, registry),
            ]
        )

    async def resolve(self, business_name: str, recorder: LogRecorder) -> ResolutionOutcome:
        ctx = ResolutionContext(business_name=business_name, recorder=recorder)
        for strategy in self.strategies:
            outcome = await strategy.try_resolve(ctx)
            if outcome is not None:
                logger.info(
                    "Strategy %s resolved %r", strategy.name, business_name,
                    extra={"stage": "identity_resolution", "step": strategy.name},
                )
                return outcome
        return ResolutionOutcome()
