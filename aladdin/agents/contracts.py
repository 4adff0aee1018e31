from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping

from ..schemas.departments import Department, DepartmentCategory


@dataclass(frozen=True, slots=True)
class SpecialistSpec:
    name: str
    instructions: str
    relevance: float | None = None


@dataclass(frozen=True, slots=True)
class DepartmentContract:
    department: Department
    name: str
    description: str
    priority: int
    keywords: tuple[str, ...]
    dependencies: tuple[Department, ...] = ()
    max_revisions: int = 3
    specialists: tuple[SpecialistSpec, ...] = ()

    @property
    def category(self) -> DepartmentCategory:
        return self.department.category


def _build_contracts() -> Dict[Department, DepartmentContract]:
    return {
        Department.STORY: DepartmentContract(
            department=Department.STORY,
            name="Story Department",
            description="Develops narrative structure, plot, themes and story arcs.",
            priority=1,
            keywords=(
                "story",
                "plot",
                "narrative",
                "scene",
                "dialogue",
                "theme",
                "arc",
                "episode",
                "script",
                "world",
                "lore",
                "conflict",
            ),
            specialists=(
                SpecialistSpec("dialogue_writer", "Write natural, character-true dialogue for the requested scene.", 0.9),
                SpecialistSpec("theme_analyzer", "Identify and develop the themes the request touches.", 0.6),
                SpecialistSpec("world_builder", "Establish setting rules, history and lore the story relies on.", 0.7),
            ),
        ),
        Department.CHARACTER: DepartmentContract(
            department=Department.CHARACTER,
            name="Character Department",
            description="Creates characters, personalities, backstories and relationships.",
            priority=2,
            keywords=(
                "character",
                "protagonist",
                "antagonist",
                "hero",
                "villain",
                "personality",
                "backstory",
                "motivation",
                "relationship",
                "profile",
                "persona",
                "cast",
            ),
            specialists=(
                SpecialistSpec("character_creator", "Create the character concept, role and defining traits.", 1.0),
                SpecialistSpec("character_profile_builder", "Build a structured character profile sheet.", 0.8),
                SpecialistSpec("psychology_analyst", "Describe motivations, fears and inner conflict.", 0.6),
                SpecialistSpec("relationship_designer", "Define relationships to existing characters.", 0.5),
                SpecialistSpec("voice_profile_creator", "Describe the character's speaking voice and cadence.", 0.4),
            ),
        ),
        Department.VISUAL: DepartmentContract(
            department=Department.VISUAL,
            name="Visual Department",
            description="Defines visual style, concept art, environments and cinematography.",
            priority=3,
            keywords=(
                "visual",
                "concept art",
                "style",
                "environment",
                "lighting",
                "camera",
                "storyboard",
                "color",
                "palette",
                "design",
                "look",
                "shot",
            ),
            dependencies=(Department.CHARACTER,),
            specialists=(
                SpecialistSpec("concept_artist", "Describe concept art direction for the request.", 0.9),
                SpecialistSpec("environment_designer", "Design the environments and set pieces involved.", 0.7),
                SpecialistSpec("lighting_designer", "Specify lighting mood and setups.", 0.5),
                SpecialistSpec("camera_operator", "Plan camera angles and movement.", 0.5),
                SpecialistSpec("storyboard_artist", "Break the request into storyboard panels.", 0.6),
            ),
        ),
        Department.IMAGE_QUALITY: DepartmentContract(
            department=Department.IMAGE_QUALITY,
            name="Image Quality Department",
            description="Produces reference imagery and verifies visual consistency.",
            priority=4,
            keywords=(
                "image",
                "reference",
                "360",
                "turnaround",
                "portrait",
                "render",
                "consistency check",
                "master reference",
                "descriptor",
                "composition",
            ),
            dependencies=(Department.CHARACTER, Department.VISUAL),
            specialists=(
                SpecialistSpec("master_reference_generator", "Describe the master reference image.", 1.0),
                SpecialistSpec("profile_360_creator", "Describe a 360-degree turnaround of the subject.", 0.8),
                SpecialistSpec("image_descriptor", "Write a precise descriptor for image generation.", 0.7),
                SpecialistSpec("shot_composer", "Compose the framing for each reference shot.", 0.5),
                SpecialistSpec("consistency_verifier", "List visual facts every image must preserve.", 0.6),
            ),
        ),
        Department.VIDEO: DepartmentContract(
            department=Department.VIDEO,
            name="Video Department",
            description="Plans video generation, editing and assembly.",
            priority=5,
            keywords=(
                "video",
                "clip",
                "footage",
                "edit",
                "editing",
                "animation",
                "trailer",
                "sequence",
                "montage",
                "render video",
                "transition",
            ),
            dependencies=(Department.STORY, Department.VISUAL),
            specialists=(
                SpecialistSpec("video_director", "Plan the shot list and pacing of the sequence.", 1.0),
                SpecialistSpec("video_editor", "Describe the edit, cuts and transitions.", 0.7),
            ),
        ),
        Department.AUDIO: DepartmentContract(
            department=Department.AUDIO,
            name="Audio Department",
            description="Creates voices, music, sound design and the final mix.",
            priority=6,
            keywords=(
                "audio",
                "sound",
                "music",
                "score",
                "voice",
                "voiceover",
                "foley",
                "soundtrack",
                "mix",
                "sfx",
            ),
            dependencies=(Department.CHARACTER,),
            specialists=(
                SpecialistSpec("voice_creator", "Specify voice casting and delivery.", 0.8),
                SpecialistSpec("music_composer", "Describe the musical score and motifs.", 0.7),
                SpecialistSpec("sound_designer", "Design ambient and effect sound.", 0.6),
                SpecialistSpec("foley_artist", "List foley cues for the action.", 0.4),
                SpecialistSpec("audio_mixer", "Describe the balance of the final mix.", 0.4),
            ),
        ),
        Department.PRODUCTION: DepartmentContract(
            department=Department.PRODUCTION,
            name="Production Department",
            description="Coordinates schedule, budget and delivery quality.",
            priority=7,
            keywords=(
                "production",
                "schedule",
                "budget",
                "timeline",
                "deadline",
                "deliverable",
                "resource",
                "plan",
                "coordinate",
                "milestone",
            ),
            max_revisions=2,
            specialists=(
                SpecialistSpec("production_manager", "Outline the production plan and owners.", 1.0),
                SpecialistSpec("scheduler", "Draft a schedule with milestones.", 0.7),
                SpecialistSpec("budget_coordinator", "Estimate the budget by line item.", 0.6),
                SpecialistSpec("quality_controller", "List the quality checks before delivery.", 0.5),
            ),
        ),
    }


_CONTRACTS = _build_contracts()


def get_contract(department: Department | str) -> DepartmentContract:
    resolved = Department.parse(department)
    if resolved is None:
        raise KeyError(f"Unknown department '{department}'")
    return _CONTRACTS[resolved]


def list_contracts() -> list[DepartmentContract]:
    return sorted(_CONTRACTS.values(), key=lambda contract: contract.priority)


def default_dependencies() -> Mapping[str, tuple[str, ...]]:
    return {
        contract.department.value: tuple(dependency.value for dependency in contract.dependencies)
        for contract in list_contracts()
    }


def department_priority(department: str) -> int:
    resolved = Department.parse(department)
    if resolved is None:
        return len(_CONTRACTS) + 1
    return _CONTRACTS[resolved].priority
