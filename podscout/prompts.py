"""Prompt builders for analysis, media-kit enhancement, discovery and outreach.

All builders are pure string construction. The organizational context block is
injected as one ``OrganizationContext`` value so every prompt site shares it.
Optional subject fields that are empty produce no line at all.
"""
from __future__ import annotations

from podscout.config import OrganizationContext
from podscout.models import CATEGORY_LABELS
from podscout.schemas import PodcastInput

# ---------------------------------------------------------------------------
# Target JSON shapes
# ---------------------------------------------------------------------------

ANALYSIS_SCHEMA = """\
{{
  "hostName": "<host name if found>",
  "overallScore": <0-100>,
  "recommendation": "<STRONG_YES|YES|MAYBE|NO|STRONG_NO>",
  "audienceFitScore": <0-100>,

  "audienceAnalysis": {{
    "description": "<detailed audience description>",
    "estimatedSize": "<listener count estimate>",
    "primaryListeners": ["<job titles/roles>"],
    "industryFocus": ["<industries covered>"],
    "seniorityLevel": "<executive/manager/practitioner/mixed>",
    "companyTypes": "<startup/enterprise/mid-market/mixed>"
  }},

  "businessModel": {{
    "isPaid": <true if paid sponsorship required, false if free guest spots>,
    "estimatedCost": "<cost estimate if paid, null if free>",
    "sponsorshipOptions": ["<available options>"],
    "pastSponsors": ["<known sponsors>"]
  }},

  "contactInfo": {{
    "contactName": "<best contact person>",
    "contactEmail": "<email if findable>",
    "linkedinUrl": "<LinkedIn URL of host/producer>",
    "bestContactMethod": "<email/linkedin/website form/twitter>",
    "outreachTips": ["<tips for reaching them>"]
  }},

  "pitchStrategy": {{
    "suggestedTopics": ["<3-5 specific episode topics that would resonate>"],
    "valueProposition": "<what value {speaker} brings to their audience>",
    "pitchAngle": "<the hook/angle for the pitch email>",
    "matchedStory": "<which {organization} story fits best for this podcast>",
    "talkingPoints": ["<key points to emphasize>"],
    "avoidTopics": ["<topics to avoid or handle carefully>"]
  }},

  "risks": ["<potential concerns or red flags>"],

  "fullAnalysis": "<2-3 paragraph detailed analysis of why this podcast is or isn't a good fit>"
}}"""

MEDIA_KIT_SCHEMA = """\
{{
  "hostName": "<host name from media kit>",
  "overallScore": <0-100 based on audience fit>,
  "recommendation": "<STRONG_YES|YES|MAYBE|NO|STRONG_NO>",
  "audienceFitScore": <0-100>,

  "audienceAnalysis": {{
    "description": "<detailed audience description from media kit>",
    "estimatedSize": "<exact listener/download count from media kit>",
    "primaryListeners": ["<job titles from media kit>"],
    "industryFocus": ["<industries from media kit>"],
    "seniorityLevel": "<from media kit data>",
    "companyTypes": "<from media kit data>"
  }},

  "businessModel": {{
    "isPaid": <true if sponsorship required>,
    "estimatedCost": "<exact pricing from media kit if available>",
    "sponsorshipOptions": ["<packages from media kit>"],
    "pastSponsors": ["<sponsors mentioned>"]
  }},

  "contactInfo": {{
    "contactName": "<contact person from media kit>",
    "contactEmail": "<email from media kit>",
    "linkedinUrl": "<if found>",
    "bestContactMethod": "<based on media kit info>",
    "outreachTips": ["<tips based on media kit>"]
  }},

  "pitchStrategy": {{
    "suggestedTopics": ["<topics that fit their audience>"],
    "valueProposition": "<why {speaker} would be good for THIS specific audience>",
    "pitchAngle": "<hook based on their audience demographics>",
    "matchedStory": "<which {organization} story fits their audience best>",
    "talkingPoints": ["<points to emphasize>"],
    "avoidTopics": ["<topics to avoid>"]
  }},

  "mediaKitInsights": {{
    "keyStats": ["<important stats from media kit>"],
    "uniqueAngles": ["<unique positioning from media kit>"],
    "credibilityMarkers": ["<past guests, awards, growth metrics>"]
  }},

  "risks": ["<concerns>"],
  "fullAnalysis": "<2-3 paragraph analysis incorporating media kit data>"
}}"""

# Category-specific inclusion/exclusion rubrics for discovery
CATEGORY_FOCUS: dict[str, str] = {
    "finance": """\
FOCUS: Finance & CFO podcasts

Look for:
- CFO interview podcasts
- Finance leadership shows
- Controller/FP&A focused content
- Industry finance podcasts (manufacturing CFO, retail finance)
- Financial transformation/modernization shows
- Podcasts about breaking free from Excel, automating finance

AVOID:
- Personal finance/investing podcasts
- Financial services/banking industry podcasts
- Accounting firm marketing podcasts
- Stock market/trading shows""",
    "ai_data": """\
FOCUS: AI & Data podcasts (with business/enterprise angle)

Look for:
- AI in enterprise/business podcasts
- Data engineering leadership shows
- CTO/technology leadership interviews
- AI for business transformation
- Practical AI implementation stories
- Data platform discussions

AVOID:
- Pure ML/research focused podcasts
- Developer-only audiences
- Startup/VC focused tech shows
- Consumer AI product discussions""",
}

DEFAULT_DISCOVERY_CATEGORY = "ai_data"


# ---------------------------------------------------------------------------
# Field rendering
# ---------------------------------------------------------------------------


def category_label(category: str | None) -> str:
    return CATEGORY_LABELS.get(category or "", "")


def render_fields(fields: list[tuple[str, str | None]]) -> str:
    """Render ``(label, value)`` pairs as ``LABEL: value`` lines, skipping empty values.

    Multi-line values start on the line after the label.
    """
    lines: list[str] = []
    for label, value in fields:
        if value is None or not str(value).strip():
            continue
        value = str(value).strip()
        if "\n" in value:
            lines.append(f"{label}:\n{value}")
        else:
            lines.append(f"{label}: {value}")
    return "\n".join(lines)


def _subject_fields(subject: PodcastInput, name_label: str = "PODCAST NAME") -> str:
    return render_fields([
        (name_label, subject.podcast_name),
        ("HOST", subject.host_name),
        ("URL", subject.podcast_url),
        ("DESCRIPTION", subject.podcast_description),
        ("CATEGORY", category_label(subject.category)),
    ])


def _first_name(speaker: str) -> str:
    parts = speaker.split()
    return parts[0] if parts else speaker


def _schema(template: str, context: OrganizationContext) -> str:
    return template.format(speaker=_first_name(context.speaker), organization=context.organization)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_analysis_prompt(subject: PodcastInput, context: OrganizationContext) -> str:
    """Prompt asking for a structured guest-fit analysis of one podcast."""
    return f"""\
You are a podcast research expert helping {context.organization} find the best podcasts \
for their CEO/founder to appear on.

{context.text.strip()}

Analyze this podcast for guest appearance potential:

{_subject_fields(subject)}

Research this podcast thoroughly and provide analysis in JSON format:
{_schema(ANALYSIS_SCHEMA, context)}

Be thorough. Research the podcast's history, past guests, audience engagement, and typical episode format.
Focus on whether their audience matches {context.organization}'s target (CFOs, finance leaders, \
CTOs at mid-market "boomer" companies)."""


def build_media_kit_prompt(subject: PodcastInput, context: OrganizationContext) -> str:
    """Prompt for the multimodal variant; the media kit PDF travels as an attachment."""
    return f"""\
You are a podcast research expert. I have a media kit PDF for a podcast that contains \
ACCURATE, VERIFIED information.

{context.text.strip()}

{context.target_audience.strip()}

## MEDIA KIT ANALYSIS
The attached PDF is the official media kit for "{subject.podcast_name}". Extract and analyze the following:

**PRIORITIZE DATA FROM THE MEDIA KIT** - this is verified information directly from the podcast. \
Prefer it over anything you believe you know about this podcast.

{_subject_fields(subject, name_label="PODCAST")}

From the media kit, extract:
1. **Exact audience size/downloads** (monthly downloads, total subscribers, etc.)
2. **Audience demographics** (job titles, industries, company sizes)
3. **Sponsorship/guest rates** (if mentioned)
4. **Contact information** (booking email, producer name)
5. **Past guests or sponsors** (shows credibility)

Then analyze fit with {context.organization}'s target audience (CFOs, finance leaders, CTOs at \
mid-market companies).

Respond in JSON format:
{_schema(MEDIA_KIT_SCHEMA, context)}"""


def build_discovery_prompt(category: str | None, limit: int, context: OrganizationContext) -> str:
    """Prompt asking for up to *limit* candidate podcasts matching the category rubric."""
    rubric_category = category if category in CATEGORY_FOCUS else DEFAULT_DISCOVERY_CATEGORY
    return f"""\
You are a podcast researcher finding the best podcasts for a B2B data platform CEO to appear on.

{context.text.strip()}

{CATEGORY_FOCUS[rubric_category]}

{context.target_audience.strip()}

Find {limit} podcasts that would be good fits. Prioritize:
1. Podcasts with established audiences (1000+ listeners)
2. Podcasts that regularly have guests
3. Podcasts where the audience matches our ICP
4. Mix of well-known and niche/emerging podcasts

Return JSON array:
[
  {{
    "podcastName": "Podcast Name",
    "hostName": "Host Name",
    "podcastUrl": "https://...",
    "category": "{category or 'finance'}",
    "audienceDescription": "Who listens to this podcast",
    "audienceSize": "Estimated listeners per episode",
    "whyRelevant": "Why this podcast's audience matches {context.organization}'s ICP",
    "isPaid": <true if typically requires payment, false if accepts free guests, null if unknown>
  }}
]

Focus on REAL podcasts you can verify. Include a mix of:
- Top-tier, well-known podcasts (harder to get on but high impact)
- Mid-tier podcasts (good balance of reach and accessibility)
- Niche/emerging podcasts (easier to get on, highly targeted audience)"""


def build_outreach_email_prompt(
    podcast_name: str,
    host_name: str | None,
    pitch_angle: str | None,
    suggested_topics: list[str],
    value_proposition: str | None,
    context: OrganizationContext,
) -> str:
    """Prompt for a short, personalized guest pitch email (free text, not JSON)."""
    details = render_fields([
        ("PODCAST", podcast_name),
        ("HOST", host_name or "the host"),
        ("PITCH ANGLE", pitch_angle),
        ("SUGGESTED TOPICS", ", ".join(suggested_topics)),
        ("VALUE FOR AUDIENCE", value_proposition),
    ])
    speaker_first = _first_name(context.speaker)
    return f"""\
Write a concise, personalized outreach email to pitch {context.speaker} (CEO of \
{context.organization}) as a guest on this podcast.

{details}

{context.text.strip()}

Write a SHORT (150 words max) email that:
1. Shows you know the podcast (reference a recent episode or theme)
2. Clearly states why {speaker_first} would be a great guest
3. Proposes 2-3 specific episode ideas
4. Has a clear call to action

Tone: Professional but warm, not salesy. Focus on value for their audience.
Do NOT start with "I hope this email finds you well" or similar clichés."""
