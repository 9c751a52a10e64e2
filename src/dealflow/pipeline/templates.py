"""Memo templates keyed by meeting category.

Each template carries the detection keywords used by keyword
classification, the system prompt for section generation, the ordered
sections rendered in sectioned mode, and the single composite prompt used
in composite mode.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class MeetingCategory(str, Enum):
    """Closed set of meeting types a transcript can be classified into."""

    FOUNDER_PITCH = "founder-pitch"
    CUSTOMER_CALL = "customer-call"
    PORTFOLIO_UPDATE = "portfolio-update"
    RECRUITING = "recruiting"
    INTERNAL = "internal"


class TemplateSection(BaseModel):
    id: str
    title: str
    prompt: str
    required: bool = True


class MemoTemplate(BaseModel):
    """Structure and prompts for one meeting category."""

    id: MeetingCategory
    name: str
    description: str
    detection_keywords: list[str] = Field(default_factory=list)
    system_prompt: str
    sections: list[TemplateSection] = Field(default_factory=list)
    composite_prompt: str


# ── Founder Pitch ────────────────────────────────────────────────────────────

_FOUNDER_PITCH = MemoTemplate(
    id=MeetingCategory.FOUNDER_PITCH,
    name="Founder Pitch",
    description="For startup pitch meetings and fundraising conversations",
    detection_keywords=[
        "pitch", "fundraising", "seed", "series", "deck", "invest", "raise",
        "valuation", "cap table", "runway", "traction", "MRR", "ARR", "growth",
        "founder", "co-founder", "startup", "venture",
    ],
    system_prompt=(
        "You are an expert VC analyst generating an investment memo from a founder "
        "pitch meeting.\nFocus on extractable investment-relevant information. Be "
        "analytical and objective.\nHighlight both opportunities and risks. Use "
        "bullet points for clarity."
    ),
    sections=[
        TemplateSection(
            id="company",
            title="Company Overview",
            prompt=(
                "extract and summarize:\n"
                "- Company name and what they do (one sentence)\n"
                "- Problem they're solving and why now\n"
                "- Target market and TAM/SAM/SOM if mentioned\n"
                "- Business model (how they make money)\n"
                "- Current stage (pre-seed, seed, Series A, etc.)"
            ),
        ),
        TemplateSection(
            id="team",
            title="Team",
            prompt=(
                "extract information about the founding team:\n"
                "- Founder names and backgrounds\n"
                "- Relevant experience and expertise\n"
                "- Team size and key hires\n"
                "- Notable advisors or board members\n"
                "- Any concerns about team gaps"
            ),
        ),
        TemplateSection(
            id="traction",
            title="Traction & Metrics",
            prompt=(
                "extract all quantitative metrics mentioned:\n"
                "- Revenue (MRR, ARR, GMV)\n"
                "- Growth rates (MoM, YoY)\n"
                "- Users/customers (total, active, paying)\n"
                "- Unit economics (CAC, LTV, margins)\n"
                "- Key milestones achieved\n"
                "Format as bullet points with specific numbers where available."
            ),
        ),
        TemplateSection(
            id="product",
            title="Product & Differentiation",
            prompt=(
                "summarize the product and competitive positioning:\n"
                "- Core product/service description\n"
                "- Key differentiators and moat\n"
                "- Technology advantages if any\n"
                "- Competition mentioned and how they compare\n"
                "- Product roadmap highlights"
            ),
        ),
        TemplateSection(
            id="ask",
            title="The Ask",
            prompt=(
                "extract fundraising details:\n"
                "- Amount being raised\n"
                "- Valuation or terms\n"
                "- Use of funds\n"
                "- Timeline and urgency\n"
                "- Current investors or commitments"
            ),
        ),
        TemplateSection(
            id="concerns",
            title="Concerns & Risks",
            prompt=(
                "identify potential concerns and risks:\n"
                "- Market risks\n"
                "- Execution risks\n"
                "- Team gaps\n"
                "- Competitive threats\n"
                "- Any red flags mentioned or implied"
            ),
        ),
        TemplateSection(
            id="next-steps",
            title="Next Steps",
            prompt=(
                "extract any discussed next steps:\n"
                "- Follow-up meetings or calls\n"
                "- Due diligence items\n"
                "- Introductions to make\n"
                "- Materials to review (deck, data room, etc.)\n"
                "- Timeline for decision"
            ),
        ),
    ],
    composite_prompt=(
        "Generate a VC investment memo from this founder pitch meeting. Include these sections:\n\n"
        "## Executive Summary\n2-3 sentence overview of the company and meeting\n\n"
        "## Company Overview\n- Company name and what they do\n- Stage and funding history\n\n"
        "## Problem & Solution\n- Problem being solved\n- Their solution/product\n\n"
        "## Market Opportunity\n- Target market size\n- Go-to-market strategy\n\n"
        "## Business Model\n- How they make money\n- Key metrics\n\n"
        "## Team\n- Founders and backgrounds\n- Key hires needed\n\n"
        "## Traction\n- Current metrics\n- Growth trajectory\n\n"
        "## Investment Ask\n- Amount raising\n- Use of funds\n\n"
        "## Key Concerns\n- Risks and red flags\n\n"
        "## Next Steps\n- Follow-up actions needed"
    ),
)

# ── Customer Call ────────────────────────────────────────────────────────────

_CUSTOMER_CALL = MemoTemplate(
    id=MeetingCategory.CUSTOMER_CALL,
    name="Customer Call",
    description="For customer feedback, product demos, and support calls",
    detection_keywords=[
        "customer", "client", "user", "feedback", "feature request", "bug",
        "support", "demo", "onboarding", "churn", "renewal", "upsell",
        "product feedback", "pain point", "workflow",
    ],
    system_prompt=(
        "You are a product manager documenting a customer call.\nFocus on actionable "
        "feedback, feature requests, and customer sentiment.\nIdentify patterns that "
        "could inform product decisions."
    ),
    sections=[
        TemplateSection(
            id="customer-context",
            title="Customer Context",
            prompt=(
                "extract customer information:\n"
                "- Company name and size\n"
                "- Role of the person(s) on the call\n"
                "- How long they've been a customer\n"
                "- Their use case and goals\n"
                "- Current plan/tier if mentioned"
            ),
        ),
        TemplateSection(
            id="feedback",
            title="Product Feedback",
            prompt=(
                "summarize all product feedback:\n"
                "- What's working well for them\n"
                "- Pain points and frustrations\n"
                "- Specific features mentioned (positive or negative)\n"
                "- Comparison to competitors\n"
                "- Workflow or usability issues"
            ),
        ),
        TemplateSection(
            id="feature-requests",
            title="Feature Requests",
            prompt=(
                "list all feature requests or enhancement suggestions:\n"
                "- Specific features requested\n"
                "- Why they need each feature\n"
                "- Priority/urgency indicated\n"
                "- Workarounds they're using currently\n"
                "Format as a numbered list with context."
            ),
        ),
        TemplateSection(
            id="sentiment",
            title="Customer Sentiment",
            prompt=(
                "assess overall customer sentiment:\n"
                "- Satisfaction level (happy, neutral, frustrated)\n"
                "- NPS likelihood if discussed\n"
                "- Churn risk indicators\n"
                "- Expansion/upsell opportunities\n"
                "- Relationship health"
            ),
        ),
        TemplateSection(
            id="action-items",
            title="Action Items",
            prompt=(
                "extract all action items and commitments:\n"
                "- Items we committed to\n"
                "- Items they committed to\n"
                "- Follow-up needed\n"
                "- Escalations required\n"
                "Include owners and timelines if mentioned."
            ),
        ),
    ],
    composite_prompt=(
        "Generate a customer discovery memo. Include:\n\n"
        "## Customer Overview\n- Who they are\n- Company/role\n\n"
        "## Key Pain Points\n- Problems they're experiencing\n\n"
        "## Current Solutions\n- What they use today\n- Limitations\n\n"
        "## Feature Requests\n- What they want\n\n"
        "## Willingness to Pay\n- Budget and urgency\n\n"
        "## Next Steps"
    ),
)

# ── Portfolio Update ─────────────────────────────────────────────────────────

_PORTFOLIO_UPDATE = MemoTemplate(
    id=MeetingCategory.PORTFOLIO_UPDATE,
    name="Portfolio Update",
    description="For check-ins with portfolio companies",
    detection_keywords=[
        "portfolio", "update", "board", "quarterly", "monthly", "progress",
        "KPIs", "metrics review", "runway", "hiring", "fundraise", "exit",
    ],
    system_prompt=(
        "You are a VC tracking portfolio company progress.\nFocus on key metrics, "
        "challenges, and where support is needed.\nBe objective about progress "
        "against goals."
    ),
    sections=[
        TemplateSection(
            id="metrics-update",
            title="Metrics Update",
            prompt=(
                "extract all key metrics discussed:\n"
                "- Revenue/ARR and growth\n"
                "- User metrics and engagement\n"
                "- Burn rate and runway\n"
                "- Team size changes\n"
                "- Key milestones hit or missed\n"
                "Compare to previous period or targets if mentioned."
            ),
        ),
        TemplateSection(
            id="progress",
            title="Progress & Wins",
            prompt=(
                "summarize positive developments:\n"
                "- Major wins and achievements\n"
                "- Product launches or updates\n"
                "- Customer wins\n"
                "- Partnerships announced\n"
                "- Team additions"
            ),
        ),
        TemplateSection(
            id="challenges",
            title="Challenges",
            prompt=(
                "identify current challenges:\n"
                "- Operational issues\n"
                "- Market headwinds\n"
                "- Team challenges\n"
                "- Product setbacks\n"
                "- Competitive pressure"
            ),
        ),
        TemplateSection(
            id="support-needed",
            title="Support Needed",
            prompt=(
                "extract where they need investor support:\n"
                "- Introductions requested (customers, hires, investors)\n"
                "- Strategic advice needed\n"
                "- Operational help\n"
                "- Fundraising support\n"
                "- Other resources"
            ),
        ),
        TemplateSection(
            id="outlook",
            title="Outlook & Next Period",
            prompt=(
                "summarize forward-looking items:\n"
                "- Goals for next quarter/month\n"
                "- Upcoming milestones\n"
                "- Fundraising timeline\n"
                "- Potential risks ahead\n"
                "- Key decisions pending"
            ),
        ),
    ],
    composite_prompt=(
        "Generate a portfolio company update memo. Include:\n\n"
        "## Metrics Update\n- Revenue, growth, burn and runway\n\n"
        "## Progress & Wins\n- Achievements since the last check-in\n\n"
        "## Challenges\n- Current problems and headwinds\n\n"
        "## Support Needed\n- Introductions or help requested\n\n"
        "## Outlook\n- Goals and milestones for the next period\n\n"
        "## Next Steps"
    ),
)

# ── Recruiting ───────────────────────────────────────────────────────────────

_RECRUITING = MemoTemplate(
    id=MeetingCategory.RECRUITING,
    name="Recruiting",
    description="For candidate interviews and recruiting calls",
    detection_keywords=[
        "candidate", "interview", "hire", "recruiting", "resume", "experience",
        "role", "position", "offer", "compensation", "background check",
    ],
    system_prompt=(
        "You are a hiring manager documenting a candidate interview.\nFocus on "
        "qualifications, cultural fit, and hiring decision factors.\nBe objective "
        "and note both strengths and concerns."
    ),
    sections=[
        TemplateSection(
            id="candidate-profile",
            title="Candidate Profile",
            prompt=(
                "extract candidate information:\n"
                "- Name and current role/company\n"
                "- Years of experience\n"
                "- Educational background\n"
                "- Key skills and expertise\n"
                "- Why they're looking/interested"
            ),
        ),
        TemplateSection(
            id="experience",
            title="Relevant Experience",
            prompt=(
                "summarize relevant experience:\n"
                "- Previous roles and responsibilities\n"
                "- Key achievements and impact\n"
                "- Skills demonstrated\n"
                "- Projects discussed\n"
                "- Domain expertise"
            ),
        ),
        TemplateSection(
            id="assessment",
            title="Assessment",
            prompt=(
                "evaluate the candidate:\n"
                "- Technical/skill fit (1-5 with notes)\n"
                "- Cultural fit observations\n"
                "- Communication and presence\n"
                "- Strengths highlighted\n"
                "- Concerns or gaps\n"
                "- Comparison to other candidates"
            ),
        ),
        TemplateSection(
            id="logistics",
            title="Logistics & Expectations",
            prompt=(
                "extract practical details:\n"
                "- Compensation expectations\n"
                "- Start date availability\n"
                "- Location/remote preferences\n"
                "- Other processes they're in\n"
                "- Timeline expectations"
            ),
        ),
        TemplateSection(
            id="recommendation",
            title="Recommendation",
            prompt=(
                "provide a hiring recommendation:\n"
                "- Overall recommendation (strong yes, yes, maybe, no)\n"
                "- Key reasons for recommendation\n"
                "- Next steps in process\n"
                "- Additional evaluations needed\n"
                "- Final decision factors"
            ),
        ),
    ],
    composite_prompt=(
        "Generate a candidate interview memo. Include:\n\n"
        "## Candidate Profile\n- Current role, background and skills\n\n"
        "## Relevant Experience\n- Roles and achievements discussed\n\n"
        "## Assessment\n- Strengths, concerns and fit\n\n"
        "## Logistics\n- Compensation, availability, location\n\n"
        "## Recommendation\n- Overall recommendation and reasons\n\n"
        "## Next Steps"
    ),
)

# ── Internal ─────────────────────────────────────────────────────────────────

_INTERNAL = MemoTemplate(
    id=MeetingCategory.INTERNAL,
    name="Internal Meeting",
    description="For internal team meetings and planning sessions",
    detection_keywords=[
        "team meeting", "planning", "strategy", "internal", "standup",
        "retrospective", "all-hands", "offsite", "roadmap", "OKRs",
    ],
    system_prompt=(
        "You are documenting an internal team meeting.\nFocus on decisions made, "
        "action items, and key discussion points.\nEnsure clarity on ownership and "
        "timelines."
    ),
    sections=[
        TemplateSection(
            id="attendees",
            title="Attendees",
            prompt=(
                "list meeting participants:\n"
                "- Names and roles of attendees\n"
                "- Who led/facilitated\n"
                "- Notable absences if mentioned"
            ),
            required=False,
        ),
        TemplateSection(
            id="agenda",
            title="Topics Discussed",
            prompt=(
                "summarize main discussion topics:\n"
                "- Agenda items covered\n"
                "- Key points for each topic\n"
                "- Time spent on major items\n"
                "- Items tabled or deferred"
            ),
        ),
        TemplateSection(
            id="decisions",
            title="Decisions Made",
            prompt=(
                "document all decisions:\n"
                "- Specific decisions reached\n"
                "- Rationale for each decision\n"
                "- Stakeholders affected\n"
                "- Any dissenting opinions noted"
            ),
        ),
        TemplateSection(
            id="action-items",
            title="Action Items",
            prompt=(
                "extract all action items:\n"
                "- Task description\n"
                "- Owner assigned\n"
                "- Due date if set\n"
                "- Priority level\n"
                "- Dependencies\n"
                "Format as a clear list with owners."
            ),
        ),
        TemplateSection(
            id="follow-up",
            title="Follow-Up",
            prompt=(
                "note follow-up items:\n"
                "- Next meeting scheduled\n"
                "- Items to revisit\n"
                "- Information to gather\n"
                "- Stakeholders to inform"
            ),
        ),
    ],
    composite_prompt=(
        "Generate a meeting summary. Include:\n\n"
        "## Meeting Purpose\n- Why we met\n\n"
        "## Key Discussion Points\n- Main topics covered\n\n"
        "## Decisions Made\n- What was decided\n\n"
        "## Action Items\n- Who does what by when\n\n"
        "## Next Steps"
    ),
)


MEMO_TEMPLATES: list[MemoTemplate] = [
    _FOUNDER_PITCH,
    _CUSTOMER_CALL,
    _PORTFOLIO_UPDATE,
    _RECRUITING,
    _INTERNAL,
]

TEMPLATE_MAP: dict[MeetingCategory, MemoTemplate] = {t.id: t for t in MEMO_TEMPLATES}


def get_template(category: MeetingCategory | str) -> MemoTemplate:
    """Look up a template; unknown ids fall back to ``internal``."""
    try:
        return TEMPLATE_MAP[MeetingCategory(category)]
    except ValueError:
        return TEMPLATE_MAP[MeetingCategory.INTERNAL]
