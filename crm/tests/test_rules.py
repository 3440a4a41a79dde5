from decimal import Decimal

from django.test import SimpleTestCase

from crm import rules


def rule(field, operator, value):
    return {'field': field, 'operator': operator, 'value': value}


class RuleTranslationTest(SimpleTestCase):
    def test_known_operators_translate_to_predicates(self):
        self.assertEqual(rules.translate_rule(rule('name', 'equals', 'Ada')), rules.Equals('name', 'Ada'))
        self.assertEqual(rules.translate_rule(rule('name', 'notEquals', 'Ada')), rules.NotEquals('name', 'Ada'))
        self.assertEqual(
            rules.translate_rule(rule('visits', 'greaterThan', '10')),
            rules.GreaterThan('visits', Decimal('10')),
        )
        self.assertEqual(
            rules.translate_rule(rule('totalSpent', 'lessThan', 99.5)),
            rules.LessThan('totalSpent', Decimal('99.5')),
        )

    def test_unknown_operator_matches_nothing(self):
        with self.assertLogs('crm.rules', level='WARNING'):
            predicate = rules.translate_rule(rule('visits', 'contains', 3))
        self.assertIsInstance(predicate, rules.MatchNothing)
        self.assertFalse(rules.matches(predicate, {'visits': 3}))

    def test_to_number(self):
        self.assertEqual(rules.to_number('42'), Decimal('42'))
        self.assertEqual(rules.to_number(' 1.5 '), Decimal('1.5'))
        self.assertIsNone(rules.to_number('abc'))
        self.assertIsNone(rules.to_number(''))
        self.assertIsNone(rules.to_number(True))
        self.assertIsNone(rules.to_number('NaN'))


class RuleMatchingTest(SimpleTestCase):
    record = {'name': 'Ada', 'email': 'ada@example.com', 'phone': '', 'visits': 30, 'totalSpent': Decimal('250.00')}

    def test_equals_accepts_numeric_string_or_number(self):
        self.assertTrue(rules.matches(rules.translate_rule(rule('visits', 'equals', '30')), self.record))
        self.assertTrue(rules.matches(rules.translate_rule(rule('visits', 'equals', 30)), self.record))
        self.assertTrue(rules.matches(rules.translate_rule(rule('visits', 'equals', '30')), {'visits': '30'}))
        self.assertFalse(rules.matches(rules.translate_rule(rule('visits', 'equals', '31')), self.record))

    def test_not_equals_is_negation(self):
        self.assertFalse(rules.matches(rules.translate_rule(rule('visits', 'notEquals', '30')), self.record))
        self.assertTrue(rules.matches(rules.translate_rule(rule('name', 'notEquals', 'Grace')), self.record))

    def test_string_equality_is_exact(self):
        self.assertTrue(rules.matches(rules.translate_rule(rule('name', 'equals', 'Ada')), self.record))
        self.assertFalse(rules.matches(rules.translate_rule(rule('name', 'equals', 'ada')), self.record))

    def test_comparisons_coerce_rule_value(self):
        self.assertTrue(rules.matches(rules.translate_rule(rule('visits', 'greaterThan', '10')), self.record))
        self.assertFalse(rules.matches(rules.translate_rule(rule('visits', 'lessThan', '10')), self.record))
        self.assertTrue(rules.matches(rules.translate_rule(rule('totalSpent', 'lessThan', 250.01)), self.record))

    def test_comparison_with_non_numeric_value_never_matches(self):
        self.assertFalse(rules.matches(rules.translate_rule(rule('visits', 'greaterThan', 'many')), self.record))
        self.assertFalse(rules.matches(rules.translate_rule(rule('name', 'greaterThan', 1)), self.record))

    def test_and_requires_every_rule(self):
        predicate = rules.compile_rules([rule('visits', 'greaterThan', 10), rule('name', 'equals', 'Grace')], 'AND')
        self.assertFalse(rules.matches(predicate, self.record))
        predicate = rules.compile_rules([rule('visits', 'greaterThan', 10), rule('name', 'equals', 'Ada')], 'AND')
        self.assertTrue(rules.matches(predicate, self.record))

    def test_or_requires_any_rule(self):
        predicate = rules.compile_rules([rule('visits', 'lessThan', 10), rule('name', 'equals', 'Ada')], 'OR')
        self.assertTrue(rules.matches(predicate, self.record))
        predicate = rules.compile_rules([rule('visits', 'lessThan', 10), rule('name', 'equals', 'Grace')], 'OR')
        self.assertFalse(rules.matches(predicate, self.record))

    def test_empty_rule_lists(self):
        self.assertTrue(rules.matches(rules.compile_rules([], 'AND'), self.record))
        self.assertFalse(rules.matches(rules.compile_rules([], 'OR'), self.record))
