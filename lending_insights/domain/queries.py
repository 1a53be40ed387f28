"""Analytical query library over the lending schema"""

from decimal import Decimal
from functools import lru_cache
from typing import Tuple

from lending_insights.domain.catalog import QueryCatalog
from lending_insights.domain.expressions import (
    AsNumber,
    Avg,
    Count,
    DatePart,
    DaysSince,
    LastSegment,
    Max,
    ParseDate,
    Rank,
    Round,
    Sum,
    and_,
    asc,
    between,
    case,
    col,
    desc,
    div,
    eq,
    gt,
    in_,
    lit,
    lt,
    mul,
    param,
    ref,
)
from lending_insights.domain.models import (
    ColumnType,
    Join,
    OutputColumn,
    ParameterSpec,
    QueryDefinition,
    QueryShape,
    Source,
)

INTEGER = ColumnType.INTEGER
DECIMAL = ColumnType.DECIMAL
STRING = ColumnType.STRING

RISK_LEVELS = ("Low", "Medium", "High")
EMI_PAYMENT = "EMI Payment"
MISSED_EMI = "Missed EMI"
PREPAYMENT = "Prepayment"
SUCCESSFUL = "Successful"
FRAUD_SUSPECTED = "Fraud Suspected"

# 5 * 365 days, not calendar years
LOYALTY_TENURE_DAYS = 1825


def c(column: str):
    return col("customer", column)


def l(column: str):  # noqa: E741
    return col("loan", column)


def t(column: str):
    return col("transaction", column)


def loan_customer() -> Source:
    return Source("customer", (Join("loan", c("customer_id"), l("customer_id")),))


def successful(transaction_type: str):
    return and_(eq(t("transaction_type"), lit(transaction_type)), eq(t("status"), lit(SUCCESSFUL)))


def customer_risk_analysis() -> QueryDefinition:
    return QueryDefinition(
        name="customer_risk_analysis",
        description="Customers with low credit scores holding high-risk loans, to prioritise risk mitigation.",
        shape=QueryShape.FILTER_JOIN_SORT,
        source=loan_customer(),
        where=and_(
            lt(c("credit_score"), param("credit_score_threshold")),
            eq(l("default_risk"), param("risk_level")),
        ),
        columns=(
            OutputColumn("customer_id", INTEGER, c("customer_id")),
            OutputColumn("name", STRING, c("name")),
            OutputColumn("credit_score", INTEGER, c("credit_score")),
            OutputColumn("default_risk", STRING, l("default_risk")),
        ),
        distinct=True,
        order_by=(asc(ref("credit_score")),),
        parameters=(
            ParameterSpec("credit_score_threshold", INTEGER, default=600, minimum=0,
                          description="Credit scores strictly below this are low"),
            ParameterSpec("risk_level", STRING, default="High", choices=RISK_LEVELS),
        ),
    )


def loan_purpose_insights() -> QueryDefinition:
    return QueryDefinition(
        name="loan_purpose_insights",
        description="Most popular loan purposes with their average loan and transaction amounts.",
        shape=QueryShape.GROUP_AGGREGATE,
        source=Source("loan", (Join("transaction", l("loan_id"), t("loan_id")),)),
        group_by=(l("loan_purpose"),),
        columns=(
            OutputColumn("loan_purpose", STRING, l("loan_purpose")),
            # counts joined transaction rows, not distinct loans
            OutputColumn("no_of_loans", INTEGER, Count(l("loan_purpose"))),
            OutputColumn("avg_loan_amt", DECIMAL, Avg(l("loan_amount"))),
            OutputColumn("avg_trn_amt", DECIMAL, Avg(t("transaction_amount"))),
        ),
        order_by=(desc(ref("no_of_loans")),),
    )


def high_value_transactions() -> QueryDefinition:
    return QueryDefinition(
        name="high_value_transactions",
        description="Successful transactions exceeding a share of their loan amount, flagged for fraud review.",
        shape=QueryShape.DERIVED_RATIO,
        source=Source(
            "customer",
            (
                Join("loan", c("customer_id"), l("customer_id")),
                Join("transaction", l("loan_id"), t("loan_id")),
            ),
        ),
        where=and_(
            eq(t("status"), lit(SUCCESSFUL)),
            # amount > threshold% of loan, free of division so native-decimal dialects can run it in SQL
            gt(mul(t("transaction_amount"), lit(100)), mul(param("threshold_percent"), l("loan_amount"))),
        ),
        columns=(
            OutputColumn("customer_id", INTEGER, c("customer_id")),
            OutputColumn("name", STRING, c("name")),
            OutputColumn("loan_id", INTEGER, l("loan_id")),
            OutputColumn("transaction_id", INTEGER, t("transaction_id")),
            OutputColumn("loan_amount", DECIMAL, l("loan_amount")),
            OutputColumn("transaction_amount", DECIMAL, t("transaction_amount")),
            OutputColumn(
                "trans_to_loan_percent",
                DECIMAL,
                mul(div(t("transaction_amount"), l("loan_amount")), lit(100)),
            ),
        ),
        order_by=(desc(ref("trans_to_loan_percent")),),
        parameters=(
            ParameterSpec("threshold_percent", DECIMAL, default=Decimal("30"), minimum=Decimal("0"),
                          description="Flag transactions strictly above this percentage of the loan"),
        ),
    )


def missed_emi_count() -> QueryDefinition:
    risk_weight = case(
        (eq(l("default_risk"), lit("High")), 3),
        (eq(l("default_risk"), lit("Medium")), 2),
        (eq(l("default_risk"), lit("Low")), 1),
    )
    highest = Max(risk_weight)
    return QueryDefinition(
        name="missed_emi_count",
        description="Missed EMIs per loan, to find loans at risk of default.",
        shape=QueryShape.CONDITIONAL_COUNT,
        source=Source(
            "loan",
            (
                Join("transaction", l("loan_id"), t("loan_id")),
                Join("customer", l("customer_id"), c("customer_id")),
            ),
        ),
        where=eq(t("transaction_type"), lit(MISSED_EMI)),
        group_by=(l("loan_id"), c("customer_id")),
        columns=(
            OutputColumn("loan_id", INTEGER, l("loan_id")),
            OutputColumn("customer_id", INTEGER, c("customer_id")),
            OutputColumn(
                "default_risk",
                STRING,
                case((eq(highest, lit(3)), "High"), (eq(highest, lit(2)), "Medium"), (eq(highest, lit(1)), "Low")),
            ),
            OutputColumn("avg_loan_amount", DECIMAL, Round(Avg(l("loan_amount")), 0)),
            OutputColumn("missed_emis", INTEGER, Count(t("transaction_id"))),
        ),
        having=gt(ref("missed_emis"), param("min_missed_emis")),
        order_by=(desc(ref("missed_emis")),),
        parameters=(ParameterSpec("min_missed_emis", INTEGER, default=0, minimum=0),),
    )


def _regional(name: str, description: str, top_n_default) -> QueryDefinition:
    region = LastSegment(c("address"), ",")
    return QueryDefinition(
        name=name,
        description=description,
        shape=QueryShape.GROUP_AGGREGATE,
        source=loan_customer(),
        group_by=(region,),
        columns=(
            OutputColumn("region", STRING, region),
            OutputColumn("total_loans", INTEGER, Count(l("loan_id"))),
            OutputColumn("total_loan_disbursement", DECIMAL, Sum(l("loan_amount"))),
            OutputColumn("avg_loan_amount", DECIMAL, Round(Avg(l("loan_amount")), 2)),
        ),
        order_by=(desc(ref("total_loan_disbursement")),),
        limit=param("top_n"),
        parameters=(
            ParameterSpec("top_n", INTEGER, default=top_n_default, minimum=0,
                          description="Maximum number of regions returned"),
        ),
    )


def regional_loan_distribution() -> QueryDefinition:
    return _regional(
        "regional_loan_distribution",
        "Loan disbursement by region (last comma-separated segment of the address).",
        None,
    )


def top_borrowing_regions() -> QueryDefinition:
    return _regional(
        "top_borrowing_regions",
        "Regions with the highest total loan disbursement.",
        10,
    )


def loyal_customers() -> QueryDefinition:
    return QueryDefinition(
        name="loyal_customers",
        description="Customers with more than five years of tenure and their loan activity.",
        shape=QueryShape.GROUP_AGGREGATE,
        source=Source("customer", (Join("loan", c("customer_id"), l("customer_id"), outer=True),)),
        where=gt(DaysSince(ParseDate(c("customer_since"))), param("min_tenure_days")),
        group_by=(c("customer_id"), c("name"), c("customer_since")),
        columns=(
            OutputColumn("customer_id", INTEGER, c("customer_id")),
            OutputColumn("name", STRING, c("name")),
            OutputColumn("customer_since", STRING, c("customer_since")),
            OutputColumn("total_loans", INTEGER, Count(l("loan_id"))),
            OutputColumn("total_loan_disbursed", DECIMAL, Sum(l("loan_amount"))),
            OutputColumn("loyalty_score", DECIMAL, Round(Avg(AsNumber(eq(l("default_risk"), lit("Low")))), 2)),
        ),
        order_by=(desc(ref("loyalty_score")), desc(ref("total_loan_disbursed"))),
        parameters=(
            ParameterSpec("min_tenure_days", INTEGER, default=LOYALTY_TENURE_DAYS, minimum=0,
                          description="Tenure must strictly exceed this many days"),
        ),
    )


def high_performing_loans() -> QueryDefinition:
    return QueryDefinition(
        name="high_performing_loans",
        description="Low-risk loans with successful EMI payments and no missed EMIs.",
        shape=QueryShape.CONDITIONAL_COUNT,
        source=Source(
            "loan",
            (
                Join("transaction", l("loan_id"), t("loan_id")),
                Join("customer", l("customer_id"), c("customer_id")),
            ),
        ),
        where=eq(l("default_risk"), lit("Low")),
        group_by=(l("loan_id"), c("customer_id"), c("name"), l("loan_amount"), l("loan_purpose")),
        columns=(
            OutputColumn("loan_id", INTEGER, l("loan_id")),
            OutputColumn("customer_id", INTEGER, c("customer_id")),
            OutputColumn("customer_name", STRING, c("name")),
            OutputColumn("loan_amount", DECIMAL, l("loan_amount")),
            OutputColumn("loan_purpose", STRING, l("loan_purpose")),
            OutputColumn("total_transactions", INTEGER, Count(t("transaction_id"))),
            OutputColumn("successful_emi_payments", INTEGER, Sum(case((successful(EMI_PAYMENT), 1), default=0))),
            OutputColumn(
                "missed_emi_count",
                INTEGER,
                Sum(case((eq(t("transaction_type"), lit(MISSED_EMI)), 1), default=0)),
            ),
            OutputColumn(
                "prepayments",
                INTEGER,
                Sum(case((eq(t("transaction_type"), lit(PREPAYMENT)), 1), default=0)),
            ),
            OutputColumn(
                "excellent_risk_score",
                DECIMAL,
                Round(Avg(AsNumber(eq(l("default_risk"), lit("Low")))), 2),
            ),
        ),
        having=and_(eq(ref("missed_emi_count"), lit(0)), gt(ref("successful_emi_payments"), lit(0))),
        order_by=(
            desc(ref("excellent_risk_score")),
            desc(ref("successful_emi_payments")),
            desc(ref("loan_amount")),
        ),
    )


def age_based_loan_analysis() -> QueryDefinition:
    age = c("age")
    age_group = case(
        (lt(age, lit(25)), "<25"),
        (between(age, 25, 34), "25-34"),
        (between(age, 35, 44), "35-44"),
        (between(age, 45, 54), "45-54"),
        default="55+",
    )
    return QueryDefinition(
        name="age_based_loan_analysis",
        description="Loan amounts disbursed per customer age bracket.",
        shape=QueryShape.GROUP_AGGREGATE,
        source=loan_customer(),
        group_by=(age_group,),
        columns=(
            OutputColumn("age_group", STRING, age_group),
            OutputColumn("total_loans", INTEGER, Count(l("loan_id"))),
            OutputColumn("total_loan_disbursed", DECIMAL, Sum(l("loan_amount"))),
            OutputColumn("avg_loan_amount", DECIMAL, Round(Avg(l("loan_amount")), 2)),
        ),
        order_by=(desc(ref("total_loan_disbursed")),),
    )


def seasonal_transaction_trends() -> QueryDefinition:
    transaction_date = ParseDate(t("transaction_date"))
    year = DatePart("year", transaction_date)
    month = DatePart("month", transaction_date)
    return QueryDefinition(
        name="seasonal_transaction_trends",
        description="Successful repayment activity per year and month.",
        shape=QueryShape.CONDITIONAL_COUNT,
        source=Source("transaction"),
        where=in_(t("transaction_type"), EMI_PAYMENT, MISSED_EMI, PREPAYMENT),
        group_by=(year, month),
        columns=(
            OutputColumn("transaction_year", INTEGER, year),
            OutputColumn("transaction_month", INTEGER, month),
            OutputColumn("count_emi_payment", INTEGER, Count(case((successful(EMI_PAYMENT), 1)))),
            OutputColumn("count_missed_emi", INTEGER, Count(case((successful(MISSED_EMI), 1)))),
            OutputColumn("count_prepayment", INTEGER, Count(case((successful(PREPAYMENT), 1)))),
            OutputColumn(
                "count_all_transactions",
                INTEGER,
                Count(case((eq(t("status"), lit(SUCCESSFUL)), 1))),
            ),
        ),
        order_by=(asc(ref("transaction_year")), asc(ref("transaction_month"))),
    )


def fraud_detection() -> QueryDefinition:
    # Every joined row is labelled; address and location are never compared.
    return QueryDefinition(
        name="fraud_detection",
        description="Successful transactions paired with the customer's behaviour-log locations.",
        shape=QueryShape.JOIN_MISMATCH,
        source=Source(
            "transaction",
            (
                Join("customer", t("customer_id"), c("customer_id")),
                Join("behavior_log", t("customer_id"), col("behavior_log", "customer_id")),
            ),
        ),
        where=eq(t("status"), lit(SUCCESSFUL)),
        columns=(
            OutputColumn("transaction_id", INTEGER, t("transaction_id")),
            OutputColumn("transaction_date", STRING, t("transaction_date")),
            OutputColumn("transaction_amount", DECIMAL, t("transaction_amount")),
            OutputColumn("customer_id", INTEGER, c("customer_id")),
            OutputColumn("customer_name", STRING, c("name")),
            OutputColumn("customer_address", STRING, c("address")),
            OutputColumn("transaction_location", STRING, col("behavior_log", "location")),
            OutputColumn("fraud_status", STRING, lit(FRAUD_SUSPECTED)),
        ),
    )


def repayment_history_ranking() -> QueryDefinition:
    return QueryDefinition(
        name="repayment_history_ranking",
        description="Loans ranked by repayment performance.",
        shape=QueryShape.RANKED_AGGREGATE,
        source=Source("loan", (Join("transaction", l("loan_id"), t("loan_id"), outer=True),)),
        group_by=(l("loan_id"), l("loan_amount")),
        columns=(
            OutputColumn("loan_id", INTEGER, l("loan_id")),
            OutputColumn("loan_amount", DECIMAL, l("loan_amount")),
            OutputColumn(
                "successful_emi_payments",
                INTEGER,
                Count(case((successful(EMI_PAYMENT), t("transaction_id")))),
            ),
            OutputColumn(
                "successful_missed_emis",
                INTEGER,
                Count(case((successful(MISSED_EMI), t("transaction_id")))),
            ),
            OutputColumn(
                "successful_prepayments",
                INTEGER,
                Count(case((successful(PREPAYMENT), t("transaction_id")))),
            ),
            OutputColumn(
                "total_emi_payment_amount",
                DECIMAL,
                Sum(case((successful(EMI_PAYMENT), t("transaction_amount")), default=0)),
            ),
            OutputColumn(
                "total_prepayment_amount",
                DECIMAL,
                Sum(case((successful(PREPAYMENT), t("transaction_amount")), default=0)),
            ),
            OutputColumn(
                "repayment_rank",
                INTEGER,
                Rank((
                    desc(ref("successful_emi_payments")),
                    desc(ref("total_emi_payment_amount")),
                    asc(ref("successful_missed_emis")),
                )),
            ),
        ),
        order_by=(asc(ref("repayment_rank")),),
    )


def credit_score_vs_loan_amount() -> QueryDefinition:
    score = c("credit_score")
    score_range = case(
        (lt(score, lit(600)), "<600"),
        (between(score, 600, 699), "600-699"),
        (between(score, 700, 799), "700-799"),
        default="800+",
    )
    return QueryDefinition(
        name="credit_score_vs_loan_amount",
        description="Average loan amount per credit score range.",
        shape=QueryShape.GROUP_AGGREGATE,
        source=loan_customer(),
        group_by=(score_range,),
        columns=(
            OutputColumn("credit_score_range", STRING, score_range),
            OutputColumn("total_loans", INTEGER, Count(l("loan_id"))),
            OutputColumn("avg_loan_amount", DECIMAL, Round(Avg(l("loan_amount")), 2)),
        ),
        # plain text order, so "<600" sorts after "800+"
        order_by=(asc(ref("credit_score_range")),),
    )


def early_repayment_patterns() -> QueryDefinition:
    prepaid = successful(PREPAYMENT)
    return QueryDefinition(
        name="early_repayment_patterns",
        description="Loans with successful prepayments and the share of principal prepaid.",
        shape=QueryShape.DERIVED_RATIO,
        source=Source(
            "loan",
            (
                Join("customer", l("customer_id"), c("customer_id")),
                Join("transaction", l("loan_id"), t("loan_id"), outer=True),
            ),
        ),
        group_by=(l("loan_id"), c("customer_id"), c("name"), l("loan_amount")),
        columns=(
            OutputColumn("loan_id", INTEGER, l("loan_id")),
            OutputColumn("loan_amount", DECIMAL, l("loan_amount")),
            OutputColumn("customer_id", INTEGER, c("customer_id")),
            OutputColumn("customer_name", STRING, c("name")),
            OutputColumn("prepayment_count", INTEGER, Count(case((prepaid, t("transaction_id"))))),
            OutputColumn(
                "total_prepayment_amount",
                DECIMAL,
                Sum(case((prepaid, t("transaction_amount")), default=0)),
            ),
            OutputColumn(
                "prepayment_percentage",
                DECIMAL,
                Round(mul(div(ref("total_prepayment_amount"), l("loan_amount")), lit(100)), 2),
            ),
        ),
        having=gt(ref("prepayment_count"), lit(0)),
        order_by=(desc(ref("prepayment_percentage")), desc(ref("prepayment_count"))),
    )


def feedback_correlation() -> QueryDefinition:
    sentiment = col("customer_feedback", "sentiment_score")
    return QueryDefinition(
        name="feedback_correlation",
        description="Customer feedback sentiment per loan status.",
        shape=QueryShape.CORRELATION,
        source=Source("loan", (Join("customer_feedback", l("loan_id"), col("customer_feedback", "loan_id")),)),
        group_by=(l("loan_status"),),
        columns=(
            OutputColumn("loan_status", STRING, l("loan_status")),
            OutputColumn("total_feedbacks", INTEGER, Count(col("customer_feedback", "feedback_text"))),
            OutputColumn("avg_sentiment_score", DECIMAL, Round(Avg(sentiment), 2)),
            OutputColumn("positive_feedback_count", INTEGER, Sum(case((gt(sentiment, lit(0)), 1), default=0))),
            OutputColumn("negative_feedback_count", INTEGER, Sum(case((lt(sentiment, lit(0)), 1), default=0))),
        ),
        order_by=(desc(ref("avg_sentiment_score")),),
    )


def all_definitions() -> Tuple[QueryDefinition, ...]:
    return (
        customer_risk_analysis(),
        loan_purpose_insights(),
        high_value_transactions(),
        missed_emi_count(),
        regional_loan_distribution(),
        loyal_customers(),
        high_performing_loans(),
        age_based_loan_analysis(),
        seasonal_transaction_trends(),
        fraud_detection(),
        repayment_history_ranking(),
        credit_score_vs_loan_amount(),
        top_borrowing_regions(),
        early_repayment_patterns(),
        feedback_correlation(),
    )


def build_default_catalog() -> QueryCatalog:
    """Register every library query and freeze the catalog"""
    catalog = QueryCatalog()
    for definition in all_definitions():
        catalog.register(definition)
    return catalog.freeze()


@lru_cache(maxsize=1)
def default_catalog() -> QueryCatalog:
    """Process-wide catalog, built on first use"""
    return build_default_catalog()
