"""
Generate-copy pipeline: task record -> transcript -> generated copy -> field write-back.

Steps run strictly in order:

    fetch_source_record -> check_precondition -> extract_fields ->
    fetch_transcript -> verify_transcript -> generate_content ->
    write_back_fields -> finalize

Skips are raised as ``PreconditionNotMet`` and end the run as ``skipped``.
Errors from the task fetch and the generation call are not caught here; the
workflow runner turns them into a ``failed`` run. Transcript fetch and field
write-back are best effort and record their own failures.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from copyflow.core.exceptions import PreconditionNotMet, ValidationError
from copyflow.integrations.clickup import ClickUpClient, TaskFieldIndex
from copyflow.integrations.content_generation import ContentGenerationClient, GeneratedContent
from copyflow.integrations.shade import TranscriptClient
from copyflow.models import WorkflowRun
from copyflow.services.step_executor import StepTracer

logger = logging.getLogger(__name__)

PRECONDITION_FIELD = "Generate Social Copy"
CLIENT_ID_FIELD = "Client ID (Supabase)"
ASSET_ID_FIELD = "Shade Asset ID"

GENERATED_COPY_FIELD = "Generated Copy"
TITLE_FIELD = "YT Title"
DESCRIPTION_FIELD = "YT Description"
TRANSCRIPT_FIELD = "Video Transcription"

TRANSCRIPT_REQUIRED = "Transcript not available - copy generation requires a transcript"

ASSET_ID_PATTERN = re.compile(r"(?<!drive )\bID:\s*([a-f0-9-]{36})", re.IGNORECASE)
DRIVE_ID_PATTERN = re.compile(r"\bDrive ID:\s*([a-f0-9-]{36})", re.IGNORECASE)


@dataclass
class SourceFields:
    task_id: str
    task_name: Optional[str] = None
    client_id: Optional[str] = None
    asset_id: Optional[str] = None
    drive_id: Optional[str] = None
    description: str = ""


@dataclass
class PipelineOutcome:
    status: str
    output: Optional[dict[str, Any]] = None
    reason: Optional[str] = None
    social_copy: Optional[str] = None


@dataclass
class FieldUpdate:
    name: str
    value: str


@dataclass
class GenerateCopyPipeline:
    clickup: ClickUpClient
    transcripts: TranscriptClient
    generator: ContentGenerationClient
    default_drive_id: Optional[str] = None

    async def run(self, run: WorkflowRun, tracer: StepTracer) -> PipelineOutcome:
        task_id = (run.input or {}).get("task_id")
        if not task_id:
            raise ValidationError("Run input has no task_id")
        task_id = str(task_id)

        task = await self.fetch_source_record(task_id, tracer)
        fields = TaskFieldIndex(task.get("custom_fields"))
        self.check_precondition(fields, tracer)
        source = self.extract_fields(task_id, task, fields, tracer)
        transcript = await self.fetch_transcript(source, tracer)
        self.verify_transcript(transcript, tracer)
        generated = await self.generate_content(source, transcript, tracer)
        results = await self.write_back_fields(source, fields, generated, transcript, tracer)
        return self.finalize(source, generated, results, tracer)

    # ------------------------------------------------------------------

    async def fetch_source_record(self, task_id: str, tracer: StepTracer) -> dict[str, Any]:
        tracer.log_step("fetch_source_record", "running", request={"task_id": task_id})
        task = await self.clickup.get_task(task_id)
        tracer.log_step(
            "fetch_source_record",
            "success",
            response={
                "task_name": task.get("name"),
                "custom_field_count": len(task.get("custom_fields") or []),
            },
        )
        return task

    def check_precondition(self, fields: TaskFieldIndex, tracer: StepTracer) -> None:
        if fields.is_checked(PRECONDITION_FIELD):
            tracer.log_step("check_precondition", "success", response={"field": PRECONDITION_FIELD})
            return
        reason = f'Precondition not met: "{PRECONDITION_FIELD}" is not checked'
        logger.info(reason)
        tracer.log_step("check_precondition", "skipped", response={"reason": reason})
        raise PreconditionNotMet(reason)

    def extract_fields(
        self,
        task_id: str,
        task: dict[str, Any],
        fields: TaskFieldIndex,
        tracer: StepTracer,
    ) -> SourceFields:
        description = task.get("text_content") or task.get("description") or ""
        asset_match = ASSET_ID_PATTERN.search(description)
        drive_match = DRIVE_ID_PATTERN.search(description)

        source = SourceFields(
            task_id=task_id,
            task_name=task.get("name"),
            client_id=fields.text(CLIENT_ID_FIELD),
            asset_id=fields.text(ASSET_ID_FIELD) or (asset_match.group(1) if asset_match else None),
            drive_id=drive_match.group(1) if drive_match else self.default_drive_id,
            description=description,
        )
        tracer.log_step(
            "extract_fields",
            "success",
            response={
                "client_id": source.client_id,
                "asset_id": source.asset_id,
                "drive_id": source.drive_id,
            },
        )
        return source

    async def fetch_transcript(self, source: SourceFields, tracer: StepTracer) -> str:
        prerequisites = (
            ("asset_id", source.asset_id),
            ("api_key", self.transcripts.enabled),
            ("drive_id", source.drive_id),
        )
        missing = [name for name, value in prerequisites if not value]
        if missing:
            detail = f"Missing: {' '.join(missing)}"
            logger.info("Cannot fetch transcript for %s: %s", source.task_id, detail)
            tracer.log_step("fetch_transcript", "skipped", response={"reason": detail, "missing": missing})
            raise PreconditionNotMet(f"{TRANSCRIPT_REQUIRED}. {detail}")

        tracer.log_step(
            "fetch_transcript",
            "running",
            request={"asset_id": source.asset_id, "drive_id": source.drive_id},
        )
        try:
            response = await self.transcripts.fetch_transcript(source.asset_id, source.drive_id)
        except httpx.HTTPError as exc:
            logger.warning("Transcript fetch for %s raised: %s", source.task_id, exc)
            tracer.log_step("fetch_transcript", "failed", error=f"Transcript request error: {exc}")
            return ""

        if not response.is_success:
            logger.warning("Transcript fetch failed [%s]: %s", response.status_code, response.text[:500])
            tracer.log_step(
                "fetch_transcript",
                "failed",
                error=f"Shade API [{response.status_code}]: {response.text[:500]}",
            )
            return ""

        transcript = response.text
        tracer.log_step("fetch_transcript", "success", response={"transcript_length": len(transcript)})
        return transcript

    def verify_transcript(self, transcript: str, tracer: StepTracer) -> None:
        if not transcript or not transcript.strip():
            tracer.log_step("verify_transcript", "skipped", response={"reason": TRANSCRIPT_REQUIRED})
            raise PreconditionNotMet(TRANSCRIPT_REQUIRED)
        tracer.log_step("verify_transcript", "success", response={"transcript_length": len(transcript)})

    async def generate_content(
        self,
        source: SourceFields,
        transcript: str,
        tracer: StepTracer,
    ) -> GeneratedContent:
        tracer.log_step(
            "generate_content",
            "running",
            request={
                "clickup_task_id": source.task_id,
                "client_id": source.client_id,
                "shade_asset_id": source.asset_id,
                "transcript_length": len(transcript),
            },
        )
        generated = await self.generator.generate(
            task_id=source.task_id,
            transcript=transcript,
            video_description=source.description or None,
            client_id=source.client_id,
            asset_id=source.asset_id,
        )
        tracer.log_step(
            "generate_content",
            "success",
            response={
                "id": generated.id,
                "duplicate": generated.duplicate,
                "copy_length": len(generated.social_copy),
            },
        )
        return generated

    def build_field_updates(self, generated: GeneratedContent, transcript: str) -> list[FieldUpdate]:
        updates: list[FieldUpdate] = []
        if generated.social_copy:
            updates.append(FieldUpdate(GENERATED_COPY_FIELD, generated.social_copy))
        if generated.youtube_titles:
            updates.append(FieldUpdate(TITLE_FIELD, generated.youtube_titles[0]))
        if generated.youtube_description:
            updates.append(FieldUpdate(DESCRIPTION_FIELD, generated.youtube_description))
        if transcript:
            updates.append(FieldUpdate(TRANSCRIPT_FIELD, transcript))
        return updates

    async def write_back_fields(
        self,
        source: SourceFields,
        fields: TaskFieldIndex,
        generated: GeneratedContent,
        transcript: str,
        tracer: StepTracer,
    ) -> dict[str, str]:
        updates = self.build_field_updates(generated, transcript)
        tracer.log_step("write_back_fields", "running", request={"fields": [u.name for u in updates]})

        results: dict[str, str] = {}
        for update in updates:
            handle = fields.get(update.name)
            if handle is None or not handle.id:
                logger.warning('ClickUp field "%s" not found on task %s, skipping', update.name, source.task_id)
                results[update.name] = "field_not_found"
                continue
            try:
                response = await self.clickup.set_field(source.task_id, handle.id, update.value)
            except Exception as exc:
                logger.warning('Error updating "%s" on task %s: %s', update.name, source.task_id, exc)
                results[update.name] = f"exception:{exc}"
                continue
            if response.is_success:
                results[update.name] = "success"
            else:
                logger.warning(
                    'Failed to update "%s" [%s]: %s', update.name, response.status_code, response.text[:200]
                )
                results[update.name] = f"error_{response.status_code}"

        tracer.log_step("write_back_fields", "success", response=results)
        return results

    def finalize(
        self,
        source: SourceFields,
        generated: GeneratedContent,
        results: dict[str, str],
        tracer: StepTracer,
    ) -> PipelineOutcome:
        output = {
            "content_id": generated.id,
            "duplicate": generated.duplicate,
            "task_name": source.task_name,
            "field_updates": results,
        }
        tracer.log_step("finalize", "success", response=output)
        return PipelineOutcome(status="success", output=output, social_copy=generated.social_copy)
