from typing import Any, Dict

from nodeflow.engine.models import Edge, NodeRecord, WorkflowGraph


LEAD_SCORING_CODE = '''
lead = input["config"]["payload"]
score = 0
if lead.get("company"):
    score += 30
if lead.get("employees", 0) >= 50:
    score += 40
if "@" in lead.get("email", "") and not lead["email"].endswith("@gmail.com"):
    score += 30
return {
    "name": lead.get("name", ""),
    "email": lead.get("email", ""),
    "company": lead.get("company", ""),
    "score": score,
}
'''


def create_lead_intake_workflow(lead: Dict[str, Any]) -> WorkflowGraph:
    """Create the lead intake workflow: webhook -> score -> qualify -> notify"""

    nodes = [
        NodeRecord(
            id="webhook",
            type="webhook",
            label="New lead",
            config={"path": "/leads", "method": "POST", "payload": lead},
        ),
        NodeRecord(
            id="score",
            type="dataTransform",
            label="Score lead",
            config={"code": LEAD_SCORING_CODE},
        ),
        NodeRecord(
            id="qualify",
            type="ifElse",
            label="Qualified?",
            config={"condition": "input.score >= 60", "operator": "expression"},
        ),
        NodeRecord(
            id="notify",
            type="sendEmail",
            label="Notify sales",
            config={
                "to": "sales@example.com",
                "subject": "Lead {{input.input.name}} qualified: {{input.condition}}",
                "body": "{{input.input.name}} from {{input.input.company}} scored {{input.input.score}}.",
            },
        ),
    ]

    edges = [
        Edge(id="e-webhook-score", source="webhook", target="score"),
        Edge(id="e-score-qualify", source="score", target="qualify"),
        Edge(id="e-qualify-notify", source="qualify", target="notify", source_handle="true"),
    ]

    return WorkflowGraph(name="Lead intake", nodes=nodes, edges=edges)


# Sample lead for testing
SAMPLE_LEAD = {
    "name": "Ada Lovelace",
    "email": "ada@analytical-engines.example",
    "company": "Analytical Engines Ltd",
    "employees": 120,
}
