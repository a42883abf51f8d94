# Copyright Red Hat
#
# tests/snapshot/test_rules.py - Comparison rule tests.
#
# This file is part of the fssnap project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest

from fssnap import InvalidArgumentError, InvalidRegexError
from fssnap.snapshot.rules import (
    AliasRules,
    ContentRule,
    ContentRuleKind,
    DirectoryRule,
    FileAttribute,
    FileRule,
    Matcher,
    MatchType,
    RuleAction,
    RuleStore,
    RuleUnion,
    check_attributes,
    split_path,
)


class TestMatcher(unittest.TestCase):
    def test_equals(self):
        matcher = Matcher(" Value ", MatchType.EQUALS)
        self.assertTrue(matcher.matches("value"))
        self.assertTrue(matcher.matches("  VALUE"))
        self.assertFalse(matcher.matches("values"))
        self.assertFalse(matcher.matches(None))

    def test_contains(self):
        matcher = Matcher("Port", MatchType.CONTAINS)
        self.assertTrue(matcher.matches("http.port.number"))
        self.assertFalse(matcher.matches("host"))

    def test_matches_is_full_match(self):
        matcher = Matcher("key[0-9]", MatchType.MATCHES)
        self.assertTrue(matcher.matches("key1"))
        self.assertFalse(matcher.matches("key12"))
        self.assertFalse(matcher.matches("akey1"))

    def test_bad_regex(self):
        with self.assertRaises(InvalidRegexError):
            Matcher("key[", MatchType.MATCHES)


class TestHelpers(unittest.TestCase):
    def test_split_path(self):
        self.assertEqual(split_path("a/b/c.txt"), ("a/b/", "c.txt"))
        self.assertEqual(split_path("c.txt"), ("", "c.txt"))
        self.assertEqual(split_path("a/b/"), ("a/", "b"))

    def test_check_attributes(self):
        attrs = check_attributes(
            [FileAttribute.SIZE, FileAttribute.MD5, FileAttribute.SIZE]
        )
        self.assertEqual(attrs, (FileAttribute.SIZE, FileAttribute.MD5))

    def test_check_attributes_bad(self):
        with self.assertRaises(InvalidArgumentError) as cm:
            check_attributes(["size"])
        self.assertIn("'size'", str(cm.exception))
        self.assertIn("FileAttribute.SIZE", str(cm.exception))

    def test_attribute_order(self):
        self.assertEqual(
            [attr.description for attr in FileAttribute],
            ["MD5 checksum", "Size", "Modification time", "Permissions"],
        )


class TestFileRule(unittest.TestCase):
    def test_literal_match(self):
        rule = FileRule("sub/file.txt")
        self.assertTrue(rule.matches("sub/file.txt"))
        self.assertFalse(rule.matches("sub/file.txt2"))

    def test_regex_match(self):
        rule = FileRule("sub/file[0-9]\\.txt", is_regex=True)
        self.assertTrue(rule.matches("sub/file1.txt"))
        self.assertFalse(rule.matches("sub/file12.txt"))
        self.assertFalse(rule.matches("other/file1.txt"))
        self.assertFalse(rule.matches("sub/deeper/file1.txt"))

    def test_skip_size_cascades_to_md5(self):
        rule = FileRule("f")
        rule.apply(RuleAction.SKIP, (FileAttribute.SIZE,))
        self.assertEqual(rule.skip, {FileAttribute.SIZE, FileAttribute.MD5})

    def test_check_overrides_skip(self):
        rule = FileRule("f")
        rule.apply(RuleAction.SKIP, (FileAttribute.SIZE,))
        rule.apply(RuleAction.CHECK, (FileAttribute.MD5,))
        self.assertEqual(rule.skip, {FileAttribute.SIZE})
        self.assertEqual(rule.check, {FileAttribute.MD5})

    def test_check_all_clears_entity_skip(self):
        rule = FileRule("f")
        rule.apply(RuleAction.SKIP, ())
        self.assertTrue(rule.skip_entity)
        rule.apply(RuleAction.CHECK, ())
        self.assertFalse(rule.skip_entity)
        self.assertEqual(rule.check, set(FileAttribute))


class TestDirectoryRule(unittest.TestCase):
    def test_literal(self):
        rule = DirectoryRule("a/b/")
        self.assertTrue(rule.matches("a/b/"))
        self.assertFalse(rule.matches("a/bc/"))

    def test_regex_searches_name(self):
        rule = DirectoryRule("a/sub-dir[0-9]/", is_regex=True)
        self.assertTrue(rule.matches("a/sub-dir1/"))
        self.assertFalse(rule.matches("b/sub-dir1/"))
        # re.search: the expression may match part of the name
        self.assertTrue(DirectoryRule("dir/", is_regex=True).matches("sub-dir/"))


class TestAliasRules(unittest.TestCase):
    def test_is_dir_skipped_ancestors(self):
        rules = AliasRules()
        rules.add_directory_rule("a/b/")
        self.assertTrue(rules.is_dir_skipped("a/b/"))
        self.assertTrue(rules.is_dir_skipped("a/b/c/file.txt"))
        self.assertFalse(rules.is_dir_skipped("a/file.txt"))
        self.assertFalse(rules.is_dir_skipped("a/"))

    def test_content_rule_last_write_wins(self):
        rules = AliasRules()
        first = ContentRule(ContentRuleKind.PROPERTY_KEY, "key", MatchType.EQUALS)
        second = ContentRule(ContentRuleKind.PROPERTY_KEY, "key", MatchType.CONTAINS)
        rules.add_content_rule("f.properties", first)
        with self.assertLogs("fssnap.snapshot.rules", level="WARNING"):
            rules.add_content_rule("f.properties", second)
        stored = list(rules.content_rules["f.properties"].values())
        self.assertEqual(stored, [second])

    def test_checked_attributes(self):
        rules = AliasRules()
        rules.add_file_rule("f", False, RuleAction.CHECK, (FileAttribute.PERMISSIONS,))
        self.assertEqual(rules.checked_attributes("f"), {FileAttribute.PERMISSIONS})
        self.assertEqual(rules.checked_attributes("g"), set())


class TestRuleStore(unittest.TestCase):
    def test_for_alias_empty(self):
        store = RuleStore()
        self.assertFalse(store.for_alias("F1"))

    def test_file_rule_merge(self):
        store = RuleStore()
        store.file_rule("F1", "f", RuleAction.SKIP, (FileAttribute.SIZE,))
        store.file_rule("F1", "f", RuleAction.SKIP, (FileAttribute.PERMISSIONS,))
        rule = store.for_alias("F1").file_rules[("f", False)]
        self.assertEqual(
            rule.skip,
            {FileAttribute.SIZE, FileAttribute.MD5, FileAttribute.PERMISSIONS},
        )

    def test_restore_file_rule(self):
        store = RuleStore()
        store.restore_file_rule("F1", FileRule("f", skip={FileAttribute.SIZE}))
        rule = store.for_alias("F1").file_rules[("f", False)]
        self.assertEqual(rule.skip, {FileAttribute.SIZE})

    def test_drop_and_clear(self):
        store = RuleStore()
        store.skip_directory("F1", "a/")
        store.skip_directory("F2", "b/")
        store.drop_alias("F1")
        self.assertEqual([alias for alias, _ in store], ["F2"])
        store.clear()
        self.assertEqual(list(store), [])


class TestRuleUnion(unittest.TestCase):
    def test_check_beats_skip_across_sides(self):
        first = AliasRules()
        second = AliasRules()
        first.add_file_rule("f", False, RuleAction.SKIP, (FileAttribute.MD5,))
        second.add_file_rule("f", False, RuleAction.CHECK, (FileAttribute.MD5,))
        union = RuleUnion(first, second)
        self.assertEqual(union.attribute_action("f", FileAttribute.MD5), RuleAction.CHECK)
        self.assertIsNone(union.attribute_action("f", FileAttribute.SIZE))

    def test_skip_from_either_side(self):
        first = AliasRules()
        second = AliasRules()
        second.add_file_rule("f", False, RuleAction.SKIP, ())
        union = RuleUnion(first, second)
        self.assertTrue(union.is_entity_skipped("f"))
        self.assertFalse(union.is_entity_skipped("g"))

    def test_content_rules_deduplicated(self):
        first = AliasRules()
        second = AliasRules()
        for side in (first, second):
            side.add_content_rule(
                "f.txt", ContentRule(ContentRuleKind.TEXT_LINE, "x", MatchType.EQUALS)
            )
        union = RuleUnion(first, second)
        self.assertEqual(len(union.content_rules("f.txt")), 1)
        self.assertEqual(union.content_rules("g.txt"), [])
