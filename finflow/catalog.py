from __future__ import annotations
import calendar
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional

from .errors import ConfigurationError, UnknownFlow
from .flow import FlowSpec
from .providers.types import GenerationParams

SAFETY_MEDIUM = tuple(
    (category, "BLOCK_MEDIUM_AND_ABOVE")
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    )
)


class FlowRegistry:
    def __init__(self, flows: Iterable[FlowSpec] = ()) -> None:
        table: Dict[str, FlowSpec] = {}
        for f in flows:
            if f.name in table:
                raise ConfigurationError(f"Duplicate flow name '{f.name}'")
            table[f.name] = f
        self._flows = MappingProxyType(table)

    def get(self, name: str) -> FlowSpec:
        try:
            return self._flows[name]
        except KeyError:
            raise UnknownFlow(f"Unknown flow '{name}'") from None

    def names(self) -> List[str]:
        return sorted(self._flows)

    def __contains__(self, name: object) -> bool:
        return name in self._flows

    def __len__(self) -> int:
        return len(self._flows)


def _number(minimum: Optional[float] = None, maximum: Optional[float] = None) -> Dict[str, Any]:
    s: Dict[str, Any] = {"type": "number"}
    if minimum is not None:
        s["minimum"] = minimum
    if maximum is not None:
        s["maximum"] = maximum
    return s


_STRINGS = {"type": "array", "items": {"type": "string"}}

# ---------------------------------------------------------------- investments

INVESTMENT_CATEGORIES = ["Equity", "Debt", "Gold", "US Stocks", "Crypto", "Other"]

INVESTMENT_ANALYZER = FlowSpec(
    name="investmentAnalyzer",
    description="Categorize a month of free-text investment notes and rate the diversification.",
    input_schema={
        "type": "object",
        "required": ["investmentNotes"],
        "properties": {"investmentNotes": {"type": "string", "minLength": 10}},
    },
    output_schema={
        "type": "object",
        "required": ["totalInvestment", "categories", "rating", "justification"],
        "properties": {
            "totalInvestment": _number(0),
            "categories": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["category", "amount", "percentage", "allocations"],
                    "properties": {
                        "category": {"type": "string", "enum": INVESTMENT_CATEGORIES},
                        "amount": _number(0),
                        "percentage": _number(0, 100),
                        "allocations": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "required": ["name", "amount", "percentage"],
                                "properties": {
                                    "name": {"type": "string", "minLength": 1},
                                    "amount": _number(0),
                                    "percentage": _number(0, 100),
                                },
                            },
                        },
                    },
                },
            },
            "rating": {"type": "integer", "minimum": 1, "maximum": 5},
            "justification": {"type": "string", "minLength": 1},
        },
    },
    prompt_template="""You are an expert investment analyst for Indian retail investors.
Analyze the user's notes about this month's investments and return a structured analysis in INR.

User's Investment Notes:
```
{{ investmentNotes }}
```

1. Identify each investment and its amount; totalInvestment is their sum.
2. Put each into exactly one category: """ + ", ".join(f"'{c}'" for c in INVESTMENT_CATEGORIES) + """.
3. For each category give amount and percentage of totalInvestment, with the individual allocations inside it.
4. Rate the strategy from 1 (undiversified, high risk) to 5 (balanced across several categories).
5. Justify the rating in 2-3 sentences.

Respond with JSON only, matching the schema exactly. Percentages must add up.
""",
    params=GenerationParams(temperature=0.3, max_output_tokens=1200),
)

# ------------------------------------------------------------------ budgeting

_BUDGET_OUTPUT = {
    "type": "object",
    "required": ["recommendedMonthlyBudget", "detailedSuggestions", "analysisSummary"],
    "properties": {
        "recommendedMonthlyBudget": {
            "type": "object",
            "required": ["needs", "wants", "investmentsAsSpending", "targetSavings", "discretionarySpendingOrExtraSavings"],
            "properties": {
                "needs": _number(0),
                "wants": _number(0),
                "investmentsAsSpending": _number(0),
                "targetSavings": _number(0),
                "discretionarySpendingOrExtraSavings": _number(),
            },
        },
        "detailedSuggestions": {
            "type": "object",
            "required": ["categoryAdjustments", "generalTips"],
            "properties": {"categoryAdjustments": _STRINGS, "generalTips": _STRINGS},
        },
        "analysisSummary": {"type": "string", "minLength": 1},
    },
}


def _no_income_plan(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if data["statedMonthlyIncome"] > 0:
        return None
    return {
        "recommendedMonthlyBudget": {
            "needs": 0, "wants": 0, "investmentsAsSpending": 0,
            "targetSavings": 0, "discretionarySpendingOrExtraSavings": 0,
        },
        "detailedSuggestions": {
            "categoryAdjustments": [],
            "generalTips": [
                "Consider tracking your expenses for a month to understand spending.",
                "Look for ways to increase your income if possible.",
            ],
        },
        "analysisSummary": (
            "A meaningful budget cannot be created without a stated monthly income. "
            "Please provide your income to get a personalized plan."
        ),
    }


BUDGETING_ASSISTANT = FlowSpec(
    name="budgetingAssistant",
    description="Suggest a monthly needs/wants/investments budget from income, goal and past spending.",
    input_schema={
        "type": "object",
        "required": ["statedMonthlyIncome", "statedMonthlySavingsGoalPercentage", "averagePastMonthlyExpenses"],
        "properties": {
            "statedMonthlyIncome": _number(0),
            "statedMonthlySavingsGoalPercentage": _number(0, 100),
            "averagePastMonthlyExpenses": _number(0),
            "pastSpendingBreakdown": {
                "type": "array",
                "default": [],
                "items": {
                    "type": "object",
                    "required": ["category", "amount"],
                    "properties": {"category": {"type": "string"}, "amount": _number(0)},
                },
            },
        },
    },
    output_schema=_BUDGET_OUTPUT,
    prompt_template="""You are a friendly and practical Personal Finance Advisor.
Create a realistic monthly budget in Indian Rupees (INR). Your response must be valid JSON.

User's Financial Details:
- Stated Monthly Income: ₹{{ statedMonthlyIncome }}
- Savings Goal: {{ statedMonthlySavingsGoalPercentage }}% of income
- Average Past Monthly Expenses (last 3 months): ₹{{ averagePastMonthlyExpenses }}
{% if pastSpendingBreakdown %}
- Past Spending Breakdown (average per month):
{% for item in pastSpendingBreakdown %}
  - {{ item.category }}: ₹{{ item.amount }}
{% endfor %}
{% else %}
- No category breakdown available.
{% endif %}

Tasks:
1. targetSavings = {{ statedMonthlyIncome }} * {{ statedMonthlySavingsGoalPercentage }} / 100.
2. Recommend needs, wants and investmentsAsSpending; with targetSavings they should not exceed income.
3. discretionarySpendingOrExtraSavings = income minus the four amounts above.
4. Give 2-4 categoryAdjustments with approximate INR amounts and 1-3 generalTips.
5. Summarize the plan against past spending in analysisSummary.

All monetary values except discretionarySpendingOrExtraSavings must be non-negative.
""",
    params=GenerationParams(temperature=0.6, max_output_tokens=1000, safety_settings=SAFETY_MEDIUM),
    short_circuit=_no_income_plan,
)

# ------------------------------------------------------------ spending insights

PERSONAS = {
    "default": "You are a balanced, practical financial advisor. You give clear, encouraging, and actionable advice.",
    "cost_cutter": "You are an aggressive cost-cutting financial analyst. You are direct, blunt, and focused on finding every possible way to reduce spending and save money.",
    "growth_investor": "You are a growth-focused financial advisor. You see all un-invested money as a missed opportunity.",
}

def analysis_period(month: int, year: int) -> str:
    """Label for a 0-based month, as the app's month picker sends it."""
    return f"{calendar.month_name[month + 1]} {year}"


def _insights_context(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "persona": PERSONAS[data["insightType"]],
        "analysisPeriod": analysis_period(data["selectedMonth"], data["selectedYear"]),
    }


SPENDING_INSIGHTS = FlowSpec(
    name="spendingInsights",
    description="Three positives, three improvements and a takeaway for one month of spending.",
    input_schema={
        "type": "object",
        "required": [
            "currentMonthIncome", "currentMonthCoreSpending", "currentMonthInvestmentSpending",
            "lastMonthCoreSpending", "spendingByCategory", "lastMonthSpendingByCategory",
            "selectedMonth", "selectedYear",
        ],
        "properties": {
            "currentMonthIncome": _number(),
            "currentMonthCoreSpending": _number(),
            "currentMonthInvestmentSpending": _number(),
            "lastMonthCoreSpending": _number(),
            "spendingByCategory": {"type": "object", "additionalProperties": {"type": "number"}},
            "lastMonthSpendingByCategory": {"type": "object", "additionalProperties": {"type": "number"}},
            "insightType": {"type": "string", "enum": sorted(PERSONAS), "default": "default"},
            "selectedMonth": {"type": "integer", "minimum": 0, "maximum": 11},
            "selectedYear": {"type": "integer", "minimum": 2000},
        },
    },
    output_schema={
        "type": "object",
        "required": ["positiveObservations", "areasForImprovement", "keyTakeaway"],
        "additionalProperties": False,
        "properties": {
            "positiveObservations": _STRINGS,
            "areasForImprovement": _STRINGS,
            "keyTakeaway": {"type": "string"},
        },
    },
    prompt_template="""## PERSONALITY
{{ persona }}

## ROLE
You are an expert personal finance analyst for Indian urban households.

## CONTEXT
Analysis period: {{ analysisPeriod }}
Income: ₹{{ currentMonthIncome }} | Core spending: ₹{{ currentMonthCoreSpending }} (last month ₹{{ lastMonthCoreSpending }})
Invested this month: ₹{{ currentMonthInvestmentSpending }}
Spending by category (this month): {{ spendingByCategory }}
Spending by category (last month): {{ lastMonthSpendingByCategory }}

Use only these numbers or simple arithmetic on them. Do not invent dates or amounts.
Big fixed expenses usually land at the start of the month; do not project spending linearly.

## OUTPUT
Return only a JSON object with exactly the keys positiveObservations (3 strings),
areasForImprovement (3 strings) and keyTakeaway (non-empty string). If both months
have zero core spending, the arrays may be empty and keyTakeaway "".
""",
    params=GenerationParams(temperature=0.6, max_output_tokens=2500, safety_settings=SAFETY_MEDIUM),
    template_context=_insights_context,
)


# -------------------------------------------------------------- goal forecaster

GOAL_FORECASTER = FlowSpec(
    name="goalForecaster",
    description="Assess whether a savings goal is reachable in the chosen number of months.",
    input_schema={
        "type": "object",
        "required": [
            "goalDescription", "goalAmount", "goalDurationMonths",
            "averageMonthlyIncome", "averageMonthlyExpenses", "currentSavingsRate",
        ],
        "properties": {
            "goalDescription": {"type": "string", "minLength": 3},
            "goalAmount": {"type": "number", "exclusiveMinimum": 0},
            "goalDurationMonths": {"type": "integer", "minimum": 1},
            "averageMonthlyIncome": _number(0),
            "averageMonthlyExpenses": _number(0),
            "currentSavingsRate": _number(0, 100),
        },
    },
    output_schema={
        "type": "object",
        "required": ["feasibilityAssessment", "requiredMonthlySavings", "suggestedActions"],
        "properties": {
            "feasibilityAssessment": {"type": "string", "minLength": 1},
            "projectedMonthsToGoal": {"type": "integer", "minimum": 1},
            "requiredMonthlySavings": _number(0),
            "suggestedActions": _STRINGS,
            "motivationalMessage": {"type": "string"},
        },
    },
    prompt_template="""You are a financial planning assistant for users in India.
The user wants to reach this goal: "{{ goalDescription }}".

- Goal amount: ₹{{ goalAmount }}
- Desired duration: {{ goalDurationMonths }} months
- Average monthly income: ₹{{ averageMonthlyIncome }}
- Average monthly expenses: ₹{{ averageMonthlyExpenses }}
- Current savings rate: {{ currentSavingsRate }}%

Return JSON with feasibilityAssessment ('Highly Feasible', 'Challenging but Possible' or
'Likely Unfeasible without changes'), requiredMonthlySavings (goal amount / duration),
projectedMonthsToGoal at the current savings rate (omit when unreachable),
2-4 suggestedActions with INR amounts, and a short motivationalMessage.
""",
    params=GenerationParams(temperature=0.5, max_output_tokens=800, safety_settings=SAFETY_MEDIUM),
)

BUILTIN_FLOWS = (INVESTMENT_ANALYZER, BUDGETING_ASSISTANT, SPENDING_INSIGHTS, GOAL_FORECASTER)


def default_registry() -> FlowRegistry:
    return FlowRegistry(BUILTIN_FLOWS)
