from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Import State
from state import ScanBatchState

# Import Nodes
from nodes.scan_parser import scan_parser_node
from nodes.resolver import document_resolver_node
from nodes.auditor import compliance_auditor_node

# Load Env
load_dotenv()


def build_graph():
    """
    Constructs the LangGraph state machine.
    """
    builder = StateGraph(ScanBatchState)

    # 1. Add Nodes
    builder.add_node("parser", scan_parser_node)
    builder.add_node("resolver", document_resolver_node)
    builder.add_node("auditor", compliance_auditor_node)

    # 2. Add Edges (The Flow)
    builder.add_edge(START, "parser")

    # Conditional logic: Is there anything to resolve?
    def check_results(state):
        if state.get("raw_results"):
            return "resolver"
        return "auditor"

    builder.add_conditional_edges("parser", check_results)

    builder.add_edge("resolver", "auditor")
    builder.add_edge("auditor", END)

    # 3. Compile
    return builder.compile()


if __name__ == "__main__":
    import catalog_storage

    app = build_graph()

    # Simulate an initial run
    print("Starting Document Compliance Engine...")
    catalog = catalog_storage.DocumentTypeCatalog()
    catalog.seed_defaults()

    initial_state: ScanBatchState = {
        "batch_id": "demo",
        "status": "Processing",
        "company_id": None,
        "employee_id": "emp-1",
        "ai_responses": [
            {
                "fileName": "nr35.pdf",
                "content": '```json\n{"success": true, "document_type_code": "NR-35", '
                           '"document_type_name": "Trabalho em Altura", '
                           '"emission_date": "2024-03-15", "confidence": 0.92, '
                           '"signatures": {"count": 2, "has_company_signature": true, '
                           '"has_instructor_signature": true, "has_employee_signature": false}}\n```',
            },
            {
                "fileName": "rg.jpg",
                "content": '{"success": true, "document_type_code": "RG", "confidence": 0.88}',
            },
            {"fileName": "blurry.jpg", "status_code": 429},
        ],
        "raw_results": [],
        "catalog": catalog.snapshot(),
        "existing_documents": {},
        "stored_documents": [],
    }
    final_state = app.invoke(initial_state)
    print(f"Metrics: {final_state.get('resolver_metrics')}")
