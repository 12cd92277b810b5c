from __future__ import annotations

TRANSCRIPTION_PROMPT = " ".join(
    [
        "Transcribe the audio content verbatim.",
        "Return plain text only without speaker labels, timestamps, or commentary.",
        "Maintain the original language detected in the audio.",
    ]
)

OPTIMIZATION_PROMPT = " ".join(
    [
        "Improve the readability of the transcript while preserving meaning.",
        "Fix obvious punctuation, apply sentence casing, and remove filler words when safe.",
        "Do not summarise or omit important information.",
        "Return plain text only.",
    ]
)

MARKDOWN_PROMPT = " ".join(
    [
        "Rewrite the transcript as clean Markdown.",
        "Use paragraphs and lists when it improves readability, but avoid fabricating headings.",
        "Do not add content that is not present in the transcript.",
    ]
)

SUBTITLE_PROMPT = " ".join(
    [
        "Convert the transcript into SubRip (SRT) format with realistic timestamps.",
        "If exact timings are unknown, estimate steadily increasing timestamps.",
        "Return valid SRT text only.",
    ]
)

_NOTES_INSTRUCTIONS = [
    "You are an editor who turns a spoken transcript into structured notes.",
    "Keep as much of what the speaker said as possible; revise and polish the wording, do not summarise it away.",
    "Organise the material hierarchically with headings and nested bullet points.",
    "Emphasise key points with bold, italic, or underline.",
    "Write in the same language as the transcript and output Markdown only, without closing remarks or commentary.",
]


def with_transcript(instructions: str, transcript: str) -> str:
    return f"{instructions}\n\nTranscript:\n{transcript}"


def build_notes_prompt(transcript: str, agenda: str = "") -> str:
    if agenda:
        agenda_block = (
            "Follow the agenda provided by the user and split the notes into sections in agenda order:\n"
            f"{agenda}"
        )
    else:
        agenda_block = "No agenda was provided; split the notes into sensible sections with a clear hierarchy."

    return "\n\n".join([*_NOTES_INSTRUCTIONS, agenda_block, "Transcript:", transcript])
