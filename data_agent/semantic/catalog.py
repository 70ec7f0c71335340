"""
Semantic Catalogue

The hand-curated business vocabulary for the multi-tenant analytics
database. This is data, versioned with the code base and shared by every
tenant. Lookups over it live in data_agent.semantic.layer.

To support a new platform, add its domain and the terms that apply to it.
"""

from data_agent.models.semantic import (
    DomainConfig,
    FallbackPath,
    JsonbPattern,
    MetricDefinition,
    RelationshipPath,
    SemanticLayerData,
    TableConfidenceConfig,
    TermMapping,
)

# ============================================================================
# Domains
# ============================================================================

DOMAINS: dict[str, DomainConfig] = {
    "ecommerce": DomainConfig(
        tables=["ecom_customers", "ecom_orders", "ecom_products"],
        description="B2C customer data from Shopify: orders, products, customer profiles",
        primary_table="ecom_customers",
    ),
    "crm": DomainConfig(
        tables=[
            "crm_contacts",
            "crm_companies",
            "crm_deals",
            "crm_activities",
            "crm_deal_line_items",
            "crm_company_assets",
        ],
        description="B2B CRM data from HubSpot: contacts, companies, deals, activities",
        primary_table="crm_contacts",
    ),
    "campaigns": DomainConfig(
        tables=["email_campaigns", "email_customer_variants", "campaign_strategy_groups"],
        description="Email marketing campaigns and per-customer variant tracking",
        primary_table="email_campaigns",
    ),
    "behavioral": DomainConfig(
        tables=["customer_behavioral_profiles", "segments", "segment_members"],
        description=(
            "AI-computed customer behavior: lifecycle stages, RFM scores, engagement, segments"
        ),
        primary_table="customer_behavioral_profiles",
    ),
    "identity": DomainConfig(
        tables=["customer_identity_links"],
        description="Identity resolution linking B2C ecommerce customers to B2B CRM contacts",
        primary_table="customer_identity_links",
    ),
}

# ============================================================================
# Business terms
# ============================================================================

TERMS: list[TermMapping] = [
    # Customer value tiers
    TermMapping(
        terms=["VIP", "high value", "top customer", "best customer", "whale"],
        sql_condition="total_spent > 500",
        table="ecom_customers",
        description="Customers with total spend above $500",
    ),
    TermMapping(
        terms=["new customer", "first-time buyer"],
        sql_condition="orders_count = 1",
        table="ecom_customers",
        description="Customers with exactly 1 order",
    ),
    TermMapping(
        terms=["repeat customer", "returning customer"],
        sql_condition="orders_count > 1",
        table="ecom_customers",
        description="Customers with more than 1 order",
    ),
    TermMapping(
        terms=["inactive", "churned", "lost"],
        sql_condition="lifecycle_stage IN ('lapsed', 'churned')",
        table="customer_behavioral_profiles",
        description="Customers who stopped purchasing",
    ),
    TermMapping(
        terms=["at risk", "at-risk", "about to churn"],
        sql_condition="lifecycle_stage = 'at_risk'",
        table="customer_behavioral_profiles",
        description="Customers showing signs of leaving",
    ),
    TermMapping(
        terms=["champion", "most engaged"],
        sql_condition="lifecycle_stage = 'champion'",
        table="customer_behavioral_profiles",
        description="Highest-value, most-engaged customers",
    ),
    TermMapping(
        terms=["active", "engaged"],
        sql_condition="lifecycle_stage IN ('active', 'loyal', 'champion')",
        table="customer_behavioral_profiles",
        description="Currently active customers",
    ),
    # Products inside order line items
    TermMapping(
        terms=["steak", "ribeye", "filet", "sirloin", "strip"],
        sql_condition="item->>'title' ILIKE '%{term}%'",
        table="ecom_orders",
        description=(
            "Orders containing specific meat products; requires jsonb_array_elements(line_items)"
        ),
    ),
    TermMapping(
        terms=["seafood", "salmon", "shrimp", "lobster", "crab"],
        sql_condition="item->>'title' ILIKE '%{term}%'",
        table="ecom_orders",
        description="Orders containing seafood products; requires jsonb_array_elements(line_items)",
    ),
    # Deal stages
    TermMapping(
        terms=["open deal", "active deal", "in pipeline"],
        sql_condition="stage NOT IN ('closed_won', 'closed_lost')",
        table="crm_deals",
        description="Deals still in the pipeline",
    ),
    TermMapping(
        terms=["won deal", "closed won"],
        sql_condition="stage = 'closed_won'",
        table="crm_deals",
        description="Deals that were won",
    ),
    TermMapping(
        terms=["lost deal", "closed lost"],
        sql_condition="stage = 'closed_lost'",
        table="crm_deals",
        description="Deals that were lost",
    ),
    TermMapping(
        terms=["negotiation", "in negotiation"],
        sql_condition="stage = 'negotiation'",
        table="crm_deals",
        description="Deals in negotiation stage",
    ),
    # Ordering schedule
    TermMapping(
        terms=[
            "ordering schedule",
            "purchase frequency",
            "order frequency",
            "buying pattern",
            "purchase interval",
            "how often",
            "reorder rate",
            "order interval",
        ],
        sql_condition="bp.avg_order_interval_days IS NOT NULL",
        table="customer_behavioral_profiles",
        description=(
            "Purchase frequency patterns. Use avg_order_interval_days, interval_trend, "
            "predicted_next_purchase from customer_behavioral_profiles. Alias as bp."
        ),
    ),
    TermMapping(
        terms=["inconsistent shopper", "irregular buyer", "erratic", "unpredictable buyer"],
        sql_condition="bp.interval_trend IN ('erratic', 'slowing')",
        table="customer_behavioral_profiles",
        description=(
            "Customers with unpredictable ordering intervals. "
            "Use interval_trend from customer_behavioral_profiles."
        ),
    ),
    TermMapping(
        terms=["consistent shopper", "regular buyer", "predictable buyer", "steady customer"],
        sql_condition="bp.interval_trend IN ('stable', 'accelerating')",
        table="customer_behavioral_profiles",
        description=(
            "Customers with stable or improving ordering intervals. "
            "Use interval_trend from customer_behavioral_profiles."
        ),
    ),
    # Campaign delivery
    TermMapping(
        terms=["sent campaign", "delivered campaign"],
        sql_condition="delivery_status IN ('sent', 'delivered')",
        table="email_customer_variants",
        description="Campaign variants that were sent or delivered",
    ),
    TermMapping(
        terms=["opened", "email opened"],
        sql_condition="delivery_status = 'opened'",
        table="email_customer_variants",
        description="Campaign variants that were opened",
    ),
    TermMapping(
        terms=["bounced", "email bounced"],
        sql_condition="delivery_status = 'bounced'",
        table="email_customer_variants",
        description="Campaign variants that bounced",
    ),
]

# ============================================================================
# Metrics
# ============================================================================

METRICS: list[MetricDefinition] = [
    MetricDefinition(
        name="average_order_value",
        aliases=["AOV", "average order value", "average order", "avg order value"],
        sql_expression="AVG(total_price::numeric)",
        table="ecom_orders",
        description="Average dollar value per order",
    ),
    MetricDefinition(
        name="total_revenue",
        aliases=["total revenue", "total sales", "revenue"],
        sql_expression="SUM(total_price::numeric)",
        table="ecom_orders",
        description="Sum of all order values",
    ),
    MetricDefinition(
        name="order_count",
        aliases=["number of orders", "order count", "how many orders"],
        sql_expression="COUNT(*)",
        table="ecom_orders",
        description="Count of orders",
    ),
    MetricDefinition(
        name="customer_count",
        aliases=["number of customers", "customer count", "how many customers"],
        sql_expression="COUNT(DISTINCT id)",
        table="ecom_customers",
        description="Count of unique customers",
    ),
    MetricDefinition(
        name="deal_pipeline_value",
        aliases=["pipeline value", "total pipeline", "deal value"],
        sql_expression="SUM(value::numeric)",
        table="crm_deals",
        description="Sum of all deal values",
    ),
    MetricDefinition(
        name="open_rate",
        aliases=["open rate", "email open rate"],
        sql_expression=(
            "ROUND(COUNT(*) FILTER (WHERE delivery_status = 'opened')::numeric / "
            "NULLIF(COUNT(*) FILTER (WHERE delivery_status IN "
            "('sent','delivered','opened','clicked')), 0) * 100, 1)"
        ),
        table="email_customer_variants",
        description="Percentage of sent emails that were opened",
    ),
]

# ============================================================================
# Relationships (directed; a missing reverse edge means no reverse join)
# ============================================================================

RELATIONSHIPS: list[RelationshipPath] = [
    RelationshipPath(
        from_table="ecom_customers",
        to_table="ecom_orders",
        join_sql="JOIN ecom_orders o ON o.customer_id = c.id AND o.org_id = c.org_id",
        description="Customer to their orders",
    ),
    RelationshipPath(
        from_table="ecom_customers",
        to_table="customer_behavioral_profiles",
        join_sql=(
            "JOIN customer_behavioral_profiles bp "
            "ON bp.ecom_customer_id = c.id AND bp.org_id = c.org_id"
        ),
        description="Customer to their behavioral profile (lifecycle, RFM, engagement)",
    ),
    RelationshipPath(
        from_table="ecom_customers",
        to_table="segment_members",
        join_sql="JOIN segment_members sm ON sm.ecom_customer_id = c.id AND sm.org_id = c.org_id",
        description="Customer to their segment memberships",
    ),
    RelationshipPath(
        from_table="segment_members",
        to_table="segments",
        join_sql="JOIN segments s ON s.id = sm.segment_id AND s.org_id = sm.org_id",
        description="Segment membership to segment definition",
    ),
    RelationshipPath(
        from_table="ecom_customers",
        to_table="email_customer_variants",
        join_sql=(
            "JOIN email_customer_variants ecv "
            "ON ecv.ecom_customer_id = c.id AND ecv.org_id = c.org_id"
        ),
        description="Customer to their campaign variants",
    ),
    RelationshipPath(
        from_table="email_customer_variants",
        to_table="email_campaigns",
        join_sql="JOIN email_campaigns ec ON ec.id = ecv.campaign_id AND ec.org_id = ecv.org_id",
        description="Campaign variant to campaign definition",
    ),
    RelationshipPath(
        from_table="ecom_customers",
        to_table="customer_identity_links",
        join_sql=(
            "JOIN customer_identity_links cil "
            "ON cil.ecom_customer_id = c.id AND cil.org_id = c.org_id"
        ),
        description="Ecommerce customer to identity link",
    ),
    RelationshipPath(
        from_table="customer_identity_links",
        to_table="crm_contacts",
        join_sql="JOIN crm_contacts cc ON cc.id = cil.crm_contact_id AND cc.org_id = cil.org_id",
        description="Identity link to CRM contact (B2B <-> B2C bridge)",
    ),
    RelationshipPath(
        from_table="crm_contacts",
        to_table="crm_companies",
        join_sql="JOIN crm_companies comp ON comp.id = cc.company_id AND comp.org_id = cc.org_id",
        description="CRM contact to their company",
    ),
    RelationshipPath(
        from_table="crm_contacts",
        to_table="crm_deals",
        join_sql="JOIN crm_deals d ON d.contact_id = cc.id AND d.org_id = cc.org_id",
        description="CRM contact to their deals",
    ),
    RelationshipPath(
        from_table="crm_deals",
        to_table="crm_deal_line_items",
        join_sql="JOIN crm_deal_line_items dli ON dli.deal_id = d.id AND dli.org_id = d.org_id",
        description="Deal to its line items/products",
    ),
    RelationshipPath(
        from_table="crm_contacts",
        to_table="crm_activities",
        join_sql="JOIN crm_activities ca ON ca.contact_id = cc.id AND ca.org_id = cc.org_id",
        description="CRM contact to their logged activities",
    ),
]

# ============================================================================
# JSONB access patterns
# ============================================================================

JSONB_PATTERNS: list[JsonbPattern] = [
    JsonbPattern(
        table="ecom_customers",
        column="default_address",
        keys=["address1", "address2", "city", "province", "zip", "country", "phone", "company"],
        access_pattern="default_address->>'KEY'",
        description=(
            "Customer shipping address. Replace KEY with field name: "
            "default_address->>'zip', default_address->>'city', etc."
        ),
    ),
    JsonbPattern(
        table="ecom_orders",
        column="shipping_address",
        keys=["address1", "address2", "city", "province", "zip", "country"],
        access_pattern="shipping_address->>'KEY'",
        description="Order shipping address. Replace KEY with field name.",
    ),
    JsonbPattern(
        table="ecom_orders",
        column="line_items",
        keys=["title", "quantity", "price", "sku", "variant_id", "variant_title"],
        access_pattern="jsonb_array_elements(line_items)",
        description=(
            "Order line items. Unnest with: jsonb_array_elements(line_items) AS item, "
            "then access item->>'title', (item->>'price')::numeric, etc."
        ),
    ),
    JsonbPattern(
        table="ecom_customers",
        column="tags",
        keys=[],
        access_pattern="tags",
        description="Customer tags array. Filter with: 'tag_value' = ANY(tags)",
    ),
    JsonbPattern(
        table="customer_behavioral_profiles",
        column="product_affinities",
        keys=["product_title", "product_type", "purchase_count", "pct_of_orders"],
        access_pattern="jsonb_array_elements(product_affinities)",
        description=(
            "Customer product affinities. Unnest with "
            "jsonb_array_elements(product_affinities) AS pa."
        ),
    ),
]

# ============================================================================
# Null fallbacks
# ============================================================================

FALLBACKS: list[FallbackPath] = [
    FallbackPath(
        primary_table="ecom_customers",
        primary_column="default_address",
        fallback_table="ecom_orders",
        fallback_column="shipping_address",
        fallback_join=(
            "LEFT JOIN LATERAL (SELECT o.shipping_address FROM ecom_orders o "
            "WHERE o.customer_id = c.id AND o.org_id = c.org_id "
            "ORDER BY o.created_at DESC LIMIT 1) latest_order ON true"
        ),
        coalesce_pattern=(
            "COALESCE(c.default_address->>'KEY', latest_order.shipping_address->>'KEY')"
        ),
        description=(
            "If customer has no default_address, fall back to shipping_address "
            "on their most recent order."
        ),
    ),
]

# ============================================================================
# Data confidence
# ============================================================================

CONFIDENCE_REGISTRY: list[TableConfidenceConfig] = [
    TableConfidenceConfig(
        table="customer_behavioral_profiles",
        confidence="ai_inferred",
        description=(
            "AI-computed during profiling runs. "
            "Values reflect model predictions, not direct observations."
        ),
        fields=[
            "lifecycle_stage",
            "communication_style",
            "engagement_score",
            "recency_score",
            "frequency_score",
            "monetary_score",
            "predicted_next_purchase",
            "product_affinities",
        ],
    ),
    TableConfidenceConfig(
        table="segments",
        confidence="ai_inferred",
        description=(
            "Segments are AI-discovered or rule-based. "
            "Membership is computed, not manually assigned."
        ),
    ),
    TableConfidenceConfig(
        table="ecom_customers",
        confidence="verified",
        description="Imported from Shopify. Factual transaction data.",
    ),
    TableConfidenceConfig(
        table="ecom_orders",
        confidence="verified",
        description="Imported from Shopify. Factual order records.",
    ),
    TableConfidenceConfig(
        table="ecom_products",
        confidence="verified",
        description="Imported from Shopify. Product catalog data.",
    ),
    TableConfidenceConfig(
        table="crm_contacts",
        confidence="verified",
        description="Imported from CRM. User-entered contact data.",
    ),
    TableConfidenceConfig(
        table="crm_companies",
        confidence="verified",
        description="Imported from CRM. User-entered company data.",
    ),
    TableConfidenceConfig(
        table="crm_deals",
        confidence="verified",
        description="Imported from CRM. User-entered deal data.",
    ),
    TableConfidenceConfig(
        table="email_campaigns",
        confidence="verified",
        description="Campaign records with delivery and engagement data.",
    ),
]

# ============================================================================
# Domain keyword hints (question scoring)
# ============================================================================

DOMAIN_KEYWORDS: dict[str, list[str]] = {
    "ecommerce": [
        "order",
        "customer",
        "product",
        "shopify",
        "purchase",
        "spend",
        "revenue",
        "cart",
        "shipping",
        "b2c",
    ],
    "crm": [
        "deal",
        "contact",
        "company",
        "pipeline",
        "hubspot",
        "b2b",
        "prospect",
        "lead",
        "opportunity",
        "account",
    ],
    "campaigns": [
        "campaign",
        "email",
        "sent",
        "opened",
        "clicked",
        "bounced",
        "newsletter",
        "marketing",
    ],
    "behavioral": ["segment", "lifecycle", "rfm", "engagement", "churn", "at risk", "behavioral"],
}


def build_catalog() -> SemanticLayerData:
    """Assemble the shipped catalogue into one model."""
    return SemanticLayerData(
        domains=DOMAINS,
        terms=TERMS,
        metrics=METRICS,
        relationships=RELATIONSHIPS,
        jsonb_patterns=JSONB_PATTERNS,
        fallbacks=FALLBACKS,
        confidence_registry=CONFIDENCE_REGISTRY,
        domain_keywords=DOMAIN_KEYWORDS,
    )
